"""Builds Gemini generateContent payloads from validated requests"""
from typing import Any, Dict

from schemas import (
    ImageCompositionRequest,
    ImageCompositionRequestV2,
    InlineImage,
    SuggestionRequest,
)

SUGGESTION_SYSTEM_PROMPT = (
    "You are a creative fashion photography assistant. Your only task is to write a concise "
    "suggestion (at most 2 sentences) for the style and scene prompt of a virtual clothing "
    "try-on photo. Focus on lighting, setting and pose. Reply with the prompt text only."
)

TRYON_INSTRUCTION = (
    "Create a photorealistic image of the person in the first image wearing the clothing item "
    "from the second image. Keep the person's face, body shape and pose unchanged and fit the "
    "garment naturally, preserving its color, pattern and texture."
)


def _inline_part(image: InlineImage) -> Dict[str, Any]:
    return {"inlineData": {"mimeType": image.mimeType, "data": image.data}}


def build_suggestion_payload(request: SuggestionRequest) -> Dict[str, Any]:
    return {
        "contents": [{"parts": [{"text": request.prompt}]}],
        "systemInstruction": {"parts": [{"text": SUGGESTION_SYSTEM_PROMPT}]},
        # suggestions do not need search tools
        "tools": [],
    }


def build_composition_payload(request: ImageCompositionRequest) -> Dict[str, Any]:
    """Text part first, then the model (person) image, then the item image"""
    if isinstance(request, ImageCompositionRequestV2):
        text = TRYON_INSTRUCTION
        if request.stylePrompt.strip():
            text = f"{TRYON_INSTRUCTION} {request.stylePrompt.strip()}"
        model_image = request.model_image
        item_image = request.item_image
    else:
        text = request.fullPrompt
        model_image = request.modelImage
        item_image = request.itemImage

    return {
        "contents": [
            {
                "role": "user",
                "parts": [
                    {"text": text},
                    _inline_part(model_image),
                    _inline_part(item_image),
                ],
            }
        ],
        "generationConfig": {"responseModalities": ["TEXT", "IMAGE"]},
    }
