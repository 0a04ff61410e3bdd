"""
Reporting Package.

AI market reports: daily summary and per-commodity analysis.

Modules:
- models: report records, generation state, user plans
- quota: per-user daily limits
- llm_client: language model abstraction (Anthropic)
- prompts: prompt templates and output post-processing
- context_builder: aggregator outputs -> prompt context
- generator: single-flight, quota-gated report service
"""
