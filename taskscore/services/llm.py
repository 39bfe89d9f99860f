import json
import logging
import re
import textwrap
from typing import Optional

import httpx
from pydantic import ValidationError

from ..errors import (
    Blocked,
    EvaluatorRequestError,
    MalformedResponse,
    NotConfigured,
    TransientServerError,
)
from ..models import NEEDS_IMPROVEMENT, AnalysisResult, TaskRecord

logger = logging.getLogger(__name__)

# Evaluator backed by Gemini (REST generateContent) by default.
# Set LLM_PROVIDER=ollama to score tasks with a local Ollama daemon instead.

TASK_CHECKLIST_MARKDOWN = """
### **Commitment**
* Completion without any excuses.
* Completion means meeting the objective of the task, within the timeframe, with Commitment.

### **Objective**
* The goal you are trying to achieve.
* Clearly defined and understood.

### **Time Frame**
* A specific duration for task completion.
* Realistic and agreed upon.

### **Quality**
* The standard of something as measured against other things of a similar kind.
* Adherence to predefined standards and requirements.

### **ELP (Enthusiasm, Liking, Passion)**
* The energy and positivity brought to the task.
* Genuine interest in the work being done.

### **Efficiency**
* Achieving maximum productivity with minimum wasted effort or expense.
* Using resources wisely.

### **Creativity**
* The use of imagination or original ideas to create something.
* Thinking outside the box to find solutions.

### **Task Review**
* A systematic examination of a task to identify and resolve issues.
* Checking work before final submission.

### **Growth Mindset**
* The belief that abilities can be developed through dedication and hard work.
* Viewing challenges as opportunities to grow.

### **Learning Hour**
* The practice of analyzing the way we execute things.
* It helps us increase our performance day by day.
"""

TRANSIENT_MARKERS = ("overloaded", "unavailable", "try again later")
BLOCKING_FINISH_REASONS = {"SAFETY", "BLOCKLIST", "PROHIBITED_CONTENT", "SPII"}


class LLM:
    def __init__(
        self,
        provider: str = "gemini",
        model: Optional[str] = None,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        http: Optional[httpx.AsyncClient] = None,
        timeout: float = 120,
    ):
        self.provider = provider.lower()
        if self.provider not in {"gemini", "ollama"}:
            raise ValueError(f"Unsupported LLM provider: {provider}")
        if self.provider == "gemini" and not api_key:
            raise NotConfigured("Gemini API key is not configured.")
        self.model_name = model or ("gemini-2.5-flash" if self.provider == "gemini" else "qwen3:14b")
        self.api_key = api_key
        default_base = (
            "https://generativelanguage.googleapis.com" if self.provider == "gemini" else "http://localhost:11434"
        )
        self.base_url = (base_url or default_base).rstrip("/")
        self._http = http
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings) -> "LLM":
        if settings.llm_provider.lower() == "ollama":
            return cls(
                "ollama",
                model=settings.ollama_model,
                base_url=settings.ollama_base_url,
                timeout=settings.llm_timeout_seconds,
            )
        return cls(
            settings.llm_provider,
            model=settings.gemini_model,
            api_key=settings.gemini_api_key,
            base_url=settings.gemini_base_url,
            timeout=settings.llm_timeout_seconds,
        )

    async def evaluate(self, record: TaskRecord) -> AnalysisResult:
        if not record.text.strip():
            return AnalysisResult(
                match_percentage=0,
                status=NEEDS_IMPROVEMENT,
                rationale="Task description is empty.",
            )

        prompt = build_prompt(record.text)
        if self.provider == "ollama":
            raw = await self._ollama_generate(prompt)
        else:
            raw = await self._gemini_generate(prompt)
        logger.debug("Raw evaluator response for task %s: %s", record.id, raw)
        return parse_analysis(raw)

    async def _gemini_generate(self, prompt: str) -> str:
        url = f"{self.base_url}/v1beta/models/{self.model_name}:generateContent"
        payload = {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": {"responseMimeType": "application/json", "temperature": 0.2},
        }
        data = await self._post(url, payload, params={"key": self.api_key})

        feedback = data.get("promptFeedback") or {}
        if not isinstance(feedback, dict):
            raise MalformedResponse("Evaluator returned a malformed promptFeedback")
        if feedback.get("blockReason"):
            raise Blocked(f"Request was blocked: {feedback['blockReason']}")
        candidates = data.get("candidates") or []
        if not candidates:
            raise Blocked("The request was blocked or returned no response.")
        if not isinstance(candidates, list):
            raise MalformedResponse("Evaluator returned malformed candidates")
        candidate = candidates[0]
        if not isinstance(candidate, dict):
            raise MalformedResponse("Evaluator returned a non-object candidate")
        if candidate.get("finishReason") in BLOCKING_FINISH_REASONS:
            raise Blocked(f"Response was filtered: {candidate['finishReason']}")
        content = candidate.get("content") or {}
        if not isinstance(content, dict):
            raise MalformedResponse("Evaluator returned a non-object content block")
        parts = content.get("parts") or []
        if not isinstance(parts, list):
            raise MalformedResponse("Evaluator returned malformed content parts")
        return "".join(part.get("text", "") for part in parts if isinstance(part, dict)).strip()

    async def _ollama_generate(self, prompt: str) -> str:
        # Uses Ollama /api/generate for a simple prompt → completion call
        url = f"{self.base_url}/api/generate"
        payload = {
            "model": self.model_name,
            "prompt": prompt,
            "format": "json",
            "stream": False,
            "options": {"temperature": 0.2},
        }
        data = await self._post(url, payload)
        return str(data.get("response", "")).strip()

    async def _post(self, url: str, payload: dict, params: Optional[dict] = None) -> dict:
        try:
            if self._http is not None:
                response = await self._http.post(url, json=payload, params=params)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(url, json=payload, params=params)
        except httpx.HTTPError as exc:
            raise EvaluatorRequestError(f"Evaluator request failed: {exc}") from exc

        if response.is_error:
            raise _classify_http_error(response)
        try:
            data = response.json()
        except ValueError as exc:
            raise MalformedResponse("Evaluator returned a non-JSON envelope") from exc
        if not isinstance(data, dict):
            raise MalformedResponse("Evaluator returned a non-object envelope")
        return data


def _classify_http_error(response: httpx.Response) -> Exception:
    body = response.text[:500]
    message = f"Evaluator returned {response.status_code}: {body}"
    if response.status_code in (429, 503):
        return TransientServerError(message)
    if response.status_code >= 500 and any(marker in body.lower() for marker in TRANSIENT_MARKERS):
        return TransientServerError(message)
    return EvaluatorRequestError(message)


def build_prompt(task_text: str) -> str:
    prompt = f"""
    You are an expert evaluator. Your task is to analyze a given text against a predefined 'task-execution framework' checklist. You must return your analysis ONLY in the specified JSON format.

    Here is the checklist:
    ---
    {TASK_CHECKLIST_MARKDOWN}
    ---
    Here is the task description to evaluate:
    ---
    {task_text}
    ---
    Evaluate how well the task description text adheres to the principles in the checklist.
    Provide a percentage score (0-100) for the match, a status ("Meets criteria" or "Needs improvement"), and a brief rationale for your decision. A good description will implicitly or explicitly touch upon several checklist items like Commitment, Objective, Time Frame, and Quality.
    Your response MUST be a raw JSON object and nothing else. Example: {{"matchPercentage": 85, "status": "Meets criteria", "rationale": "The task clearly defines the objective and quality standards."}}
    """
    return textwrap.dedent(prompt).strip()


def parse_analysis(raw: str) -> AnalysisResult:
    snippet = extract_json_snippet(raw)
    if not snippet:
        raise MalformedResponse("Evaluator response contained no JSON object")
    try:
        payload = json.loads(snippet)
    except json.JSONDecodeError as exc:
        raise MalformedResponse(f"Evaluator response is not valid JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise MalformedResponse("Evaluator response is not a JSON object")
    try:
        return AnalysisResult.model_validate(payload)
    except ValidationError as exc:
        raise MalformedResponse(f"Invalid JSON structure received from evaluator: {exc}") from exc


def extract_json_snippet(text: str) -> Optional[str]:
    if not text:
        return None
    fenced = re.search(r"```(?:json)?\s*(\{.*?\})\s*```", text, re.DOTALL)
    if fenced:
        return fenced.group(1)
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end == -1 or end <= start:
        return None
    return text[start : end + 1]
