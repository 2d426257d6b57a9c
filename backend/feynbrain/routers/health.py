from fastapi import APIRouter

from ..settings import settings

router = APIRouter(tags=["health"])


@router.get("/health")
async def health():
	return {"status": "healthy", "service": "feynbrain", "version": "1.0.0"}


@router.get("/info")
def info():
	return {
		"status": "ok",
		"service_mode": settings.service_mode,
		"llm_provider": settings.llm_provider,
		"llm_configured": bool(settings.groq_api_key or settings.gemini_api_key),
		"tts_configured": bool(settings.elevenlabs_api_key),
		"max_questions": settings.max_questions,
		"max_passes": settings.max_passes,
	}
