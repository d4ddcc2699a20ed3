"""
Client for the hosted multimodal model (Google Gemini, REST API).

One POST per analysis: the recorded video goes inline as base64 next to a
coaching prompt, and the model is asked to answer with JSON matching
ANALYSIS_SCHEMA. The raw text is returned; parsing happens in the caller.
No retries: failures are reported immediately.
"""
import logging
import os
from typing import Optional

import requests

from app.core.errors import UpstreamError, UpstreamRateLimited

logger = logging.getLogger(__name__)

GEMINI_API_KEY = os.getenv("GEMINI_API_KEY", "")
GEMINI_MODEL = os.getenv("GEMINI_MODEL", "gemini-2.5-flash")
GEMINI_API_URL = os.getenv("GEMINI_API_URL", "https://generativelanguage.googleapis.com/v1beta").rstrip("/")
GEMINI_TIMEOUT_SECONDS = float(os.getenv("GEMINI_TIMEOUT_SECONDS", "300"))
GEMINI_TEMPERATURE = 0.4

_RATE_LIMIT_MARKERS = ("quota", "rate limit", "resource_exhausted", "resource exhausted")


def _enum(*values):
    return {"type": "STRING", "enum": list(values)}


# Response schema in the REST API's OpenAPI subset
ANALYSIS_SCHEMA = {
    "type": "OBJECT",
    "properties": {
        "overallScore": {"type": "NUMBER", "description": "Score from 0 to 100 based on public speaking best practices."},
        "summary": {"type": "STRING", "description": "A brief, encouraging summary of the performance."},
        "fillerWords": {
            "type": "ARRAY",
            "description": "List of detected filler words.",
            "items": {
                "type": "OBJECT",
                "properties": {"word": {"type": "STRING"}, "count": {"type": "NUMBER"}},
            },
        },
        "pacing": {
            "type": "OBJECT",
            "properties": {
                "status": _enum("Lento", "Normal", "Rápido"),
                "wpm": {"type": "NUMBER", "description": "Estimated words per minute."},
                "feedback": {"type": "STRING"},
            },
        },
        "emotions": {
            "type": "ARRAY",
            "description": "Dominant emotions with the estimated percentage of time present.",
            "items": {
                "type": "OBJECT",
                "properties": {"name": {"type": "STRING"}, "percentage": {"type": "NUMBER"}},
                "required": ["name", "percentage"],
            },
        },
        "bodyLanguage": {
            "type": "OBJECT",
            "properties": {
                "eyeContact": _enum("Pobre", "Bueno", "Excelente"),
                "posture": _enum("Encorvado", "Relajado", "Tenso", "Erguido"),
                "gestures": _enum("Limitados", "Naturales", "Excesivos"),
                "feedback": {"type": "STRING"},
            },
        },
        "speechAnalysis": {
            "type": "OBJECT",
            "properties": {
                "clarity": _enum("Confuso", "Claro", "Muy Claro"),
                "coherence": _enum("Baja", "Buena", "Excelente"),
                "persuasion": _enum("Poco Convincente", "Convincente", "Muy Persuasivo"),
                "feedback": {"type": "STRING"},
            },
        },
        "vocalAnalysis": {
            "type": "OBJECT",
            "properties": {
                "toneVariety": _enum("Monótono", "Variado", "Dinámico"),
                "volumeControl": _enum("Bajo", "Adecuado", "Alto"),
                "articulation": _enum("Confusa", "Buena", "Precisa"),
                "feedback": {"type": "STRING"},
            },
        },
        "imageAnalysis": {
            "type": "OBJECT",
            "properties": {
                "attire": {"type": "STRING"},
                "hair": {"type": "STRING"},
                "face": {"type": "STRING"},
                "feedback": {"type": "STRING"},
            },
        },
        "improvementTips": {"type": "ARRAY", "items": {"type": "STRING"}, "description": "3-5 actionable tips to improve."},
        "actionPlan": {
            "type": "OBJECT",
            "properties": {
                "exercises": {"type": "ARRAY", "items": {"type": "STRING"}},
                "dynamics": {"type": "ARRAY", "items": {"type": "STRING"}},
                "resources": {"type": "ARRAY", "items": {"type": "STRING"}},
            },
            "required": ["exercises", "dynamics", "resources"],
        },
    },
    "required": [
        "overallScore", "summary", "fillerWords", "pacing", "emotions",
        "bodyLanguage", "speechAnalysis", "improvementTips", "actionPlan",
    ],
}

_BASE_PROMPT = {
    "es": (
        "Actúa como un experto entrenador de oratoria de clase mundial. Analiza este video de una presentación.\n"
        "Identifica muletillas, ritmo, emociones (con porcentajes estimados), lenguaje corporal y contenido "
        "(claridad, coherencia, persuasión).\n\n"
        "CRUCIAL: Genera un 'actionPlan' detallado basado en las debilidades detectadas:\n"
        "1. 'exercises': Ejercicios vocales o físicos específicos e inmediatos.\n"
        "2. 'dynamics': Rutinas de práctica.\n"
        "3. 'resources': Recomendaciones concretas de qué leer o investigar."
    ),
    "en": (
        "Act as a world-class public speaking coach. Analyze this presentation video.\n"
        "Identify filler words, pacing, emotions (with estimated percentages), body language, and content "
        "(clarity, coherence, persuasion).\n\n"
        "CRUCIAL: Generate a detailed 'actionPlan' based on detected weaknesses:\n"
        "1. 'exercises': Specific, immediate vocal or physical exercises.\n"
        "2. 'dynamics': Practice routines.\n"
        "3. 'resources': Concrete recommendations on what to read or research."
    ),
}

_PREMIUM_PROMPT = {
    "es": (
        "\n\nMODO PREMIUM ACTIVADO:\n"
        "Realiza un análisis adicional llenando los campos 'vocalAnalysis' e 'imageAnalysis'.\n"
        "- vocalAnalysis: Evalúa la variedad de tono, control de volumen y articulación.\n"
        "- imageAnalysis: Evalúa EXCLUSIVAMENTE la imagen de la persona ('attire', 'hair', 'face'). "
        "NO evalúes el fondo, el entorno ni la iluminación."
    ),
    "en": (
        "\n\nPREMIUM MODE ACTIVATED:\n"
        "Perform an additional analysis by filling in the 'vocalAnalysis' and 'imageAnalysis' fields.\n"
        "- vocalAnalysis: Evaluate tone variety, volume control, and articulation.\n"
        "- imageAnalysis: Evaluate EXCLUSIVELY the person's image ('attire', 'hair', 'face'). "
        "DO NOT evaluate the background, environment, or lighting."
    ),
}

_CONTEXT_PROMPT = {
    "es": {
        "topic": "\nTEMA DEFINIDO POR EL USUARIO: \"{}\". Evalúa en 'speechAnalysis.coherence' y 'summary' si el discurso se mantiene en el tema.",
        "audience": "\nPÚBLICO OBJETIVO: \"{}\". Evalúa en 'speechAnalysis.persuasion' y 'summary' si el tono y el estilo son apropiados para este público.",
        "goal": "\nOBJETIVO PRINCIPAL DEL USUARIO: \"{}\". El 'overallScore', 'speechAnalysis.persuasion' y el 'actionPlan' deben basarse en qué tan bien se cumple este objetivo.",
        "closing": "\nRESPUESTA DEBE ESTAR EN ESPAÑOL.",
    },
    "en": {
        "topic": "\nUSER DEFINED TOPIC: \"{}\". Evaluate in 'speechAnalysis.coherence' and 'summary' whether the speech stays on this topic.",
        "audience": "\nTARGET AUDIENCE: \"{}\". Evaluate in 'speechAnalysis.persuasion' and 'summary' whether tone and style suit this audience.",
        "goal": "\nUSER'S MAIN GOAL: \"{}\". 'overallScore', 'speechAnalysis.persuasion' and 'actionPlan' must reflect how well this goal is achieved.",
        "closing": "\nRESPONSE MUST BE IN ENGLISH.",
    },
}


SUPPORTED_LANGUAGES = ("es", "en")


def normalize_language(language: Optional[str]) -> str:
    """Map a requested language code onto a prompt language, defaulting to Spanish."""
    language = (language or "").strip().lower()
    return language if language in SUPPORTED_LANGUAGES else "es"


def build_prompt(
    language: str,
    is_premium: bool,
    topic: Optional[str] = None,
    audience: Optional[str] = None,
    goal: Optional[str] = None,
) -> str:
    lang = normalize_language(language)
    context = _CONTEXT_PROMPT[lang]
    prompt = _BASE_PROMPT[lang]
    if is_premium:
        prompt += _PREMIUM_PROMPT[lang]
    if topic:
        prompt += context["topic"].format(topic.strip())
    if audience:
        prompt += context["audience"].format(audience.strip())
    if goal:
        prompt += context["goal"].format(goal.strip())
    prompt += context["closing"]
    return prompt


def _is_rate_limit_message(message: str) -> bool:
    message = (message or "").lower()
    return any(marker in message for marker in _RATE_LIMIT_MARKERS)


def _error_message(response: requests.Response) -> str:
    try:
        return response.json().get("error", {}).get("message") or response.text
    except ValueError:
        return response.text


class GeminiAnalyzer:
    def __init__(
        self,
        api_key: str = None,
        model: str = None,
        api_url: str = None,
        timeout: float = None,
        session: requests.Session = None,
    ):
        self.api_key = api_key if api_key is not None else GEMINI_API_KEY
        self.model = model or GEMINI_MODEL
        self.api_url = (api_url or GEMINI_API_URL).rstrip("/")
        self.timeout = timeout or GEMINI_TIMEOUT_SECONDS
        self.session = session or requests.Session()

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def analyze(
        self,
        video_base64: str,
        mime_type: str,
        language: str = "es",
        is_premium: bool = False,
        topic: Optional[str] = None,
        audience: Optional[str] = None,
        goal: Optional[str] = None,
    ) -> str:
        """Send the video to the model and return the raw response text."""
        if not self.configured:
            raise UpstreamError("Analysis service is not configured")

        payload = {
            "contents": [{
                "parts": [
                    {"inline_data": {"mime_type": mime_type, "data": video_base64}},
                    {"text": build_prompt(language, is_premium, topic, audience, goal)},
                ]
            }],
            "generationConfig": {
                "responseMimeType": "application/json",
                "responseSchema": ANALYSIS_SCHEMA,
                "temperature": GEMINI_TEMPERATURE,
            },
        }
        url = f"{self.api_url}/models/{self.model}:generateContent"

        try:
            response = self.session.post(
                url,
                params={"key": self.api_key},
                json=payload,
                timeout=self.timeout,
            )
        except requests.exceptions.Timeout as e:
            logger.error("[Gemini] Request timed out after %ss", self.timeout)
            raise UpstreamError("The analysis service took too long to respond. Please try again.") from e
        except requests.exceptions.RequestException as e:
            logger.error("[Gemini] Request failed: %s", e)
            raise UpstreamError("Could not reach the analysis service. Please try again.") from e

        if response.status_code != 200:
            message = _error_message(response)
            logger.error("[Gemini] HTTP %s: %s", response.status_code, message[:300])
            if response.status_code == 429 or _is_rate_limit_message(message):
                raise UpstreamRateLimited(
                    "The analysis service is experiencing high demand. Please try again in a few minutes."
                )
            raise UpstreamError(f"Analysis service error ({response.status_code})")

        try:
            data = response.json()
        except ValueError:
            # Not JSON at all; let the caller's parser report it
            return response.text

        candidates = data.get("candidates") or []
        if not candidates:
            block_reason = (data.get("promptFeedback") or {}).get("blockReason")
            logger.error("[Gemini] No candidates in response (blockReason=%s)", block_reason)
            raise UpstreamError("No response from the analysis service")

        parts = (candidates[0].get("content") or {}).get("parts") or []
        text = "".join(part.get("text", "") for part in parts)
        if not text:
            raise UpstreamError("No response from the analysis service")
        return text


_default_analyzer = None


def get_analyzer() -> GeminiAnalyzer:
    """FastAPI dependency returning the shared analyzer. Overridden in tests."""
    global _default_analyzer
    if _default_analyzer is None:
        _default_analyzer = GeminiAnalyzer()
    return _default_analyzer
