from crmflow.llm.client import LLMClient, extract_json

__all__ = ["LLMClient", "extract_json"]
