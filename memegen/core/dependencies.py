from fastapi import Request

from memegen.gateway.pipeline import GenerationPipeline


def get_pipeline(request: Request) -> GenerationPipeline:
    """The process-wide pipeline built in the app lifespan."""
    return request.app.state.pipeline
