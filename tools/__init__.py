from dwe.tools.chunking import STRATEGIES, chunk_text, execute_chunk
from dwe.tools.http import execute_http
from dwe.tools.llm import build_chat_bedrock_converse, execute_generate

__all__ = [
    "STRATEGIES",
    "chunk_text",
    "execute_chunk",
    "execute_http",
    "execute_generate",
    "build_chat_bedrock_converse",
]
