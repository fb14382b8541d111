"""
AI-augmented decision services.

Embeddings, knowledge retrieval and LLM reasoning feed the augmented
orchestration graph. The deterministic classifier and planner always decide
the task; the LLM only proposes step wording and supplies cited guidance.
"""
