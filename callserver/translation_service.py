# translation_service.py
import asyncio
import io
import logging
import os
import re
from typing import Optional

import requests
from dotenv import load_dotenv
from openai import OpenAI

from callserver import schemas

load_dotenv()

logger = logging.getLogger(__name__)

OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
OPENAI_MODEL = os.getenv("OPENAI_MODEL", "gpt-3.5-turbo")
GOOGLE_TRANSLATE_API_KEY = os.getenv("GOOGLE_TRANSLATE_API_KEY")
GOOGLE_TRANSLATE_URL = "https://translation.googleapis.com/language/translate/v2"
REQUEST_TIMEOUT = 15

LANGUAGE_CODES = {
    "en": "English",
    "es": "Spanish",
    "fr": "French",
    "de": "German",
    "it": "Italian",
    "pt": "Portuguese",
    "ru": "Russian",
    "zh": "Chinese",
    "ja": "Japanese",
    "ko": "Korean",
    "hi": "Hindi",
    "ta": "Tamil",
    "ar": "Arabic",
}

# Unicode blocks that identify a script on their own
SCRIPT_RANGES = [
    ("ta", re.compile(r"[\u0B80-\u0BFF]")),
    ("hi", re.compile(r"[\u0900-\u097F]")),
    ("zh", re.compile(r"[\u4e00-\u9fff]")),
    ("ar", re.compile(r"[\u0600-\u06FF]")),
]

COMMON_WORDS = {
    "es": {
        "el", "la", "los", "las", "que", "y", "es", "en", "un", "una", "por", "para", "con",
        "pero", "más", "muy", "hola", "gracias", "cómo", "como", "está", "estoy", "qué", "sí",
        "también", "porque", "donde", "cuando", "bueno", "buenos", "días", "tengo", "tiene",
        "hay", "del", "al", "se", "lo", "su", "nosotros", "usted", "ahora", "siempre", "nada",
    },
    "fr": {
        "le", "la", "les", "et", "est", "un", "une", "des", "du", "je", "tu", "il", "elle",
        "nous", "vous", "ils", "pas", "pour", "dans", "avec", "sur", "qui", "que", "bonjour",
        "merci", "oui", "très", "bien", "mais", "ce", "cette", "être", "avoir", "fait",
        "aussi", "comment", "où", "toujours", "rien", "maintenant", "au", "aux",
    },
}
ACCENT_HINTS = {
    "es": re.compile(r"[ñ¿¡]"),
    "fr": re.compile(r"[çœèêëîïûù]"),
}
WORD_RE = re.compile(r"[a-zà-ÿœ]+")


def _openai_client() -> Optional[OpenAI]:
    if not OPENAI_API_KEY:
        return None
    return OpenAI(api_key=OPENAI_API_KEY)


# --- Translation ---
def translate_text(text: str, target_language: str, source_language: str = "auto") -> Optional[schemas.TranslationResult]:
    """Translate `text`, falling back to the mock provider on any failure."""
    if not text or not text.strip():
        return None

    if source_language == target_language:
        return schemas.TranslationResult(
            text=text,
            confidence=1.0,
            source_language=source_language,
            target_language=target_language,
        )

    try:
        if OPENAI_API_KEY:
            return _translate_with_openai(text, target_language, source_language)
        if GOOGLE_TRANSLATE_API_KEY:
            return _translate_with_google(text, target_language, source_language)
        logger.debug("[translate] No translation API configured, using mock translation")
    except Exception as e:
        logger.error(f"[translate] Translation error: {e}")

    return _mock_translation(text, target_language, source_language)


def _translate_with_openai(text: str, target_language: str, source_language: str) -> schemas.TranslationResult:
    target_name = LANGUAGE_CODES.get(target_language, target_language)
    if source_language != "auto":
        source_name = LANGUAGE_CODES.get(source_language, source_language)
    else:
        source_name = "the detected language"

    prompt = (
        f"Translate the following text from {source_name} to {target_name}. "
        f"Only return the translated text, nothing else:\n\n\"{text}\""
    )
    response = _openai_client().chat.completions.create(
        model=OPENAI_MODEL,
        messages=[
            {"role": "system", "content": "You are a professional translator. Translate the given text accurately and naturally."},
            {"role": "user", "content": prompt},
        ],
        max_tokens=500,
        temperature=0.3,
    )
    translated = (response.choices[0].message.content or "").strip()
    if not translated:
        raise ValueError("No translation received from OpenAI")

    return schemas.TranslationResult(
        text=translated,
        confidence=0.9,
        source_language=source_language,
        target_language=target_language,
        provider="openai",
    )


def _translate_with_google(text: str, target_language: str, source_language: str) -> schemas.TranslationResult:
    body = {"q": text, "target": target_language, "format": "text"}
    if source_language != "auto":
        body["source"] = source_language

    response = requests.post(
        GOOGLE_TRANSLATE_URL,
        params={"key": GOOGLE_TRANSLATE_API_KEY},
        json=body,
        timeout=REQUEST_TIMEOUT,
    )
    response.raise_for_status()
    translation = response.json()["data"]["translations"][0]

    return schemas.TranslationResult(
        text=translation["translatedText"],
        confidence=0.95,
        source_language=translation.get("detectedSourceLanguage") or source_language,
        target_language=target_language,
        provider="google",
    )


def _mock_translation(text: str, target_language: str, source_language: str) -> schemas.TranslationResult:
    name = LANGUAGE_CODES.get(target_language, target_language)
    return schemas.TranslationResult(
        text=f"[{name} translation of: {text}]",
        confidence=0.8,
        source_language=source_language,
        target_language=target_language,
        provider="mock",
    )


# --- Language Detection ---
def detect_language(text: str) -> str:
    if not text or len(text.strip()) < 3:
        return "en"

    client = _openai_client()
    if client is None:
        return detect_language_heuristic(text)

    try:
        response = client.chat.completions.create(
            model=OPENAI_MODEL,
            messages=[
                {"role": "system", "content": "You are a language detection expert. Return only the ISO 639-1 language code (2 letters) for the given text."},
                {"role": "user", "content": f"Detect the language of this text: \"{text}\""},
            ],
            max_tokens=10,
            temperature=0,
        )
        detected = (response.choices[0].message.content or "").strip().lower()
        return detected if detected in LANGUAGE_CODES else "en"
    except Exception as e:
        logger.error(f"[translate] Language detection error: {e}")
        return "en"


def detect_language_heuristic(text: str) -> str:
    for code, pattern in SCRIPT_RANGES:
        if pattern.search(text):
            return code

    lower = text.lower()
    scores = {}
    words = WORD_RE.findall(lower)
    for code, vocabulary in COMMON_WORDS.items():
        score = sum(1 for w in words if w in vocabulary)
        if ACCENT_HINTS[code].search(lower):
            score += 2
        scores[code] = score

    best = max(scores, key=scores.get)
    ties = [code for code, score in scores.items() if score == scores[best]]
    if scores[best] < 2 or len(ties) > 1:
        return "en"
    return best


# --- Transcription ---
def transcribe_audio(audio_bytes: bytes, audio_format: str = "webm") -> schemas.TranscriptionResult:
    client = _openai_client()
    if client is None:
        logger.debug("[translate] OpenAI API key not configured, using mock transcription")
        return _mock_transcription()

    try:
        upload = io.BytesIO(audio_bytes)
        upload.name = f"audio.{audio_format}"
        result = client.audio.transcriptions.create(
            model="whisper-1",
            file=upload,
            response_format="verbose_json",
        )
        return schemas.TranscriptionResult(
            text=result.text,
            language=_language_code(getattr(result, "language", None)),
            confidence=0.9,
            duration=getattr(result, "duration", None) or 0,
            segments=[],
        )
    except Exception as e:
        logger.error(f"[translate] Audio transcription error: {e}")
        return _mock_transcription()


def _language_code(language: Optional[str]) -> str:
    """Whisper reports language names ("english"); map them back to codes."""
    if not language:
        return "auto"
    language = language.lower()
    if language in LANGUAGE_CODES:
        return language
    for code, name in LANGUAGE_CODES.items():
        if name.lower() == language:
            return code
    return "auto"


def _mock_transcription() -> schemas.TranscriptionResult:
    return schemas.TranscriptionResult(
        text="This is a mock transcription for development purposes.",
        language="en",
        confidence=0.85,
        duration=3.5,
        segments=[],
    )


# --- Async wrappers (provider calls block) ---
async def translate_text_async(text: str, target_language: str, source_language: str = "auto"):
    return await asyncio.to_thread(translate_text, text, target_language, source_language)

async def detect_language_async(text: str) -> str:
    return await asyncio.to_thread(detect_language, text)

async def transcribe_audio_async(audio_bytes: bytes, audio_format: str = "webm"):
    return await asyncio.to_thread(transcribe_audio, audio_bytes, audio_format)
