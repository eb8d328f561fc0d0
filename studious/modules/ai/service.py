"""
Study assistant backed by Gemini.

A question may carry the document the user is looking at: its title,
type and description go into the prompt, and a PDF given by URL is
downloaded and sent inline so the model can read it. Earlier turns of
the conversation are replayed ahead of the question.
"""
from google import genai
from google.genai import types
from studious.config import settings
from studious.core.errors import AssistantNotConfigured, AssistantUnavailable, DocumentFetchError
from studious.modules.ai.schemas import AssistantRequest
from typing import List, Optional
import httpx
import logging

logger = logging.getLogger(__name__)

PDF_MIME_TYPE = "application/pdf"

_client: Optional[genai.Client] = None


def get_genai_client() -> genai.Client:
    global _client
    if not settings.gemini_api_key:
        raise AssistantNotConfigured()
    if _client is None:
        _client = genai.Client(api_key=settings.gemini_api_key)
    return _client


def build_prompt(request: AssistantRequest) -> str:
    doc = request.document_context
    if doc is None:
        return f"You are a helpful AI study assistant. Help the user with their question:\n\n{request.message}"
    description = f"Description: {doc.description}\n" if doc.description else ""
    return (
        "You are a helpful AI assistant analyzing a document. Here's the document context:\n\n"
        f"Document Title: {doc.title}\n"
        f"Document Type: {doc.type}\n"
        f"{description}\n"
        f"User Question: {request.message}\n\n"
        "Please provide a helpful and accurate answer based on the document context. "
        "If the question cannot be answered from the context, politely let the user know."
    )


def build_document_prompt(request: AssistantRequest) -> str:
    doc = request.document_context
    description = f"Description: {doc.description}. " if doc.description else ""
    return (
        f'You are analyzing a PDF document titled "{doc.title}". {description}'
        f"Please answer the following question based on the document content:\n\n{request.message}"
    )


def wants_document(request: AssistantRequest) -> bool:
    return bool(request.file_url) and request.document_context is not None \
        and request.document_context.type == "document"


class AssistantService:
    def __init__(self, client: genai.Client, model: Optional[str] = None,
                 http: Optional[httpx.AsyncClient] = None, allowed_url_prefix: Optional[str] = None):
        self.client = client
        self.model = model or settings.gemini_model
        self.http = http
        self.allowed_url_prefix = allowed_url_prefix

    async def fetch_document(self, url: str) -> bytes:
        if self.allowed_url_prefix and not url.startswith(self.allowed_url_prefix):
            logger.warning(f"Refusing to fetch document outside storage: {url}")
            raise DocumentFetchError()
        try:
            if self.http is not None:
                response = await self.http.get(url)
            else:
                async with httpx.AsyncClient(timeout=settings.ai_fetch_timeout, follow_redirects=True) as http:
                    response = await http.get(url)
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error(f"Error fetching document {url}: {str(e)}")
            raise DocumentFetchError()
        logger.info(f"Fetched document {url} ({len(response.content)} bytes)")
        return response.content

    async def build_contents(self, request: AssistantRequest) -> List[types.Content]:
        contents = [
            types.Content(
                role="user" if turn.role == "user" else "model",
                parts=[types.Part.from_text(text=turn.content)],
            )
            for turn in request.conversation_history
        ]
        if wants_document(request):
            data = await self.fetch_document(request.file_url)
            parts = [
                types.Part.from_bytes(data=data, mime_type=PDF_MIME_TYPE),
                types.Part.from_text(text=build_document_prompt(request)),
            ]
        else:
            parts = [types.Part.from_text(text=build_prompt(request))]
        contents.append(types.Content(role="user", parts=parts))
        return contents

    async def ask(self, request: AssistantRequest) -> str:
        contents = await self.build_contents(request)
        try:
            response = await self.client.aio.models.generate_content(model=self.model, contents=contents)
        except Exception as e:
            logger.error(f"Gemini API error: {str(e)}")
            raise AssistantUnavailable()
        text = response.text
        if not text:
            logger.error("Gemini returned an empty response")
            raise AssistantUnavailable()
        return text
