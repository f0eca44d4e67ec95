"""Per-item extraction pipeline.

Raw feedback items pass a quality gate (word floor plus a Gemini
actionability check), are turned into typed signals with embeddings, and are
handed to the deduplication stage for suggestion building. The worker pool
runs the pipeline concurrently and retries retryable failures.

Shared Utilities (from src/common/):
    - config: PipelineSettings, GeminiConfig
    - logging: log_item(), log_decision(), log_error()

Modules:
    models: Signals, gate decisions, item outcomes and response schemas
    capabilities: Embedder / classifier / interpreter protocols and errors
    prompt_templates: Classifier and interpreter prompt builders
    gemini_client: Vertex AI Gemini wrapper using google-genai SDK
    quality_gate: Word floor and actionability gate
    signal_extractor: Signal drafting, fallback and embedding
    pipeline: FeedbackPipeline state machine
    worker: ExtractionWorkerPool (asyncio + tenacity retries)
"""
