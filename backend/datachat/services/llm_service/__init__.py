"""LLM service module.

Language model abstraction layer supporting Google Gemini, Ollama and
NVIDIA endpoints.

Key modules:
- llm.py: Provider factory and the single text-generation call
- structured_invoker.py: JSON extraction, repair and schema validation
- llm_schemas.py: Pydantic schemas for structured outputs
"""
