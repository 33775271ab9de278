"""
OpenAI-backed answer generator.

Turns a GenerationRequest into a chat completion. The pipeline only cares
whether an answer came back; all failures propagate unchanged.
"""

from typing import Dict, List, Optional

from openai import OpenAI

from ..core.pipeline import GenerationRequest
from ..storage.models import SimplicityLevel

LEVEL_DIRECTIVES: Dict[SimplicityLevel, str] = {
    SimplicityLevel.FIVE_YEAR_OLD: "Explain this as you would to a five year old.",
    SimplicityLevel.NORMAL: "Explain this clearly for a curious adult.",
    SimplicityLevel.ADVANCED: "Explain this in depth for someone with background knowledge.",
}


class OpenAIExplainer:
    """Callable generator for ExplanationPipeline.ask.

    Sends the level directive and any retry instructions as system
    messages ahead of the conversation history.
    """

    def __init__(self, model: str, timeout: Optional[float] = None):
        """Initialize the explainer.

        Args:
            model: OpenAI model name (required)
            timeout: Request timeout in seconds

        Raises:
            ValueError: If model is missing/empty
        """
        if not model or not model.strip():
            raise ValueError("model is required and cannot be empty")

        self.model = model
        self.client = OpenAI(timeout=timeout) if timeout is not None else OpenAI()

    def build_messages(
        self,
        request: GenerationRequest,
        history: Optional[List[Dict[str, str]]] = None,
    ) -> List[Dict[str, str]]:
        """System directives, then prior turns, then the new question."""
        messages = [{"role": "system", "content": LEVEL_DIRECTIVES[request.level]}]
        if request.retry_instructions:
            messages.append({"role": "system", "content": request.retry_instructions})
        messages.extend(history or [])
        messages.append({"role": "user", "content": request.question})
        return messages

    def __call__(
        self,
        request: GenerationRequest,
        history: Optional[List[Dict[str, str]]] = None,
    ) -> Optional[str]:
        """Generate an answer.

        Returns:
            The answer text, or None if the model returned no content

        Raises:
            ValueError: If the question is empty
            OpenAI API errors: Propagated without modification
        """
        if not request.question or not request.question.strip():
            raise ValueError("question is required and cannot be empty")

        response = self.client.chat.completions.create(
            model=self.model,
            messages=self.build_messages(request, history),
        )

        if not response.choices:
            return None
        return response.choices[0].message.content
