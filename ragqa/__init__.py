"""QA test pipeline for multi-tenant RAG chatbots.

Generates test questions from a tenant's indexed corpus, runs them through
the chatbot's answer pipeline, scores every answer with an LLM judge and
rolls the results into a per-tenant quality report.
"""
