"""Chapter-by-chapter structuring of the linear text through a chat model."""

import json
import logging
import re
import time
from typing import Callable, Protocol

from pydantic import ValidationError

from oer_ingest.checkpoint.log import CheckpointLog
from oer_ingest.errors import ChatServiceError, InvalidResponseError, StructuringError
from oer_ingest.models.book import StructuredSection
from oer_ingest.models.output import StructuringResult, StructuringStatus

log = logging.getLogger(__name__)

COMPLETION_SENTINEL = "i am finished"

SYSTEM_PROMPT = """You are an expert document parser and a master of typography and readability. Your single purpose is to analyze the provided text stream and structure it into a clean JSON array representing the book's hierarchy.

Adhere to the following rules with absolute precision:

1. **JSON Format:** The entire output MUST be a single, valid JSON array of objects.
2. **Universal Schema:** Every object in the array must conform to this exact schema:
   {{
     "bookTitle": "{book_title}",
     "chapterTitle": "string",
     "subsectionTitle": "string",
     "content": "string"
   }}
3. **Content Scoping (Start of Extraction):**
   - You MUST IGNORE and DISCARD all preliminary content (front matter).
   - Begin your extraction ONLY when you encounter the first official chapter (e.g., "Chapter 1") or a formal "Introduction".
4. **Chapter Completeness and Control (CRITICAL):**
   - When you process a chapter, you MUST process it in its entirety, including ALL of its subsections.
   - You MUST only process and return ONE chapter per turn.
5. **Markdown Formatting & Readability:**
   - The "content" field MUST be formatted using Markdown syntax.
   - Introduce paragraph breaks (\\n\\n) within the "content" field to break up long walls of text into smaller, more digestible paragraphs.
6. **Content Integrity (Anti-Hallucination Rule):**
   - The "content" field must contain the verbatim text extracted from the section, formatted for readability.
   - You MUST NOT summarize, rephrase, add, or omit any of the original text's meaning.
   - Ensure words are never incorrectly concatenated. For example, 'be expected' must not become 'beexpected'.
7. **Placeholder Preservation:**
   - Preserve image placeholder tags like [IMAGE_PLACEHOLDER_123] exactly as they appear.
8. **Generic Cleaning:**
   - Ignore recurring headers/footers and page break markers (e.g. "--- PAGE 12 ---").
9. **Completion:**
   - When there are no chapters left after the last one you returned, reply with exactly: I am finished
10. **CRITICAL OUTPUT RULE:** Your entire response MUST be ONLY the raw JSON array, starting with `[` and ending with `]`. Do not add any conversational text or markdown backticks."""

FIRST_PROMPT = """Here is the full text of the book. Please find the very first chapter and provide its content in the required JSON format. Remember to include ALL of its subsections and provide only this single chapter.

<FULL_TEXT>
{book_text}
</FULL_TEXT>"""

RESUME_PROMPT = """We are resuming a book parsing task{reason}. The last chapter you successfully processed was "{subsection_title}" in the chapter "{chapter_title}". It ended with the text: "...{snippet}".

Please find the single next chapter that immediately follows this one from the full text provided below.

<FULL_TEXT>
{book_text}
</FULL_TEXT>"""

NEXT_PROMPT = """Thank you. Please find the single next chapter immediately following the one you just provided. Analyze the full text provided below to find it.

<FULL_TEXT>
{book_text}
</FULL_TEXT>"""

RESET_REASON_API = " that failed due to persistent API errors"
RESET_REASON_INVALID = " that failed due to invalid output"

_FENCED_JSON = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```|(\[[\s\S]*\])")


class ChatSession(Protocol):
    """One conversation. History lives here and is disposable."""

    def send_message(self, prompt: str) -> str: ...


class ChatClient(Protocol):
    """Factory for fresh conversations."""

    def start_session(self, system_instruction: str) -> ChatSession: ...


def build_system_prompt(book_title: str) -> str:
    return SYSTEM_PROMPT.format(book_title=book_title.replace('"', '\\"'))


def extract_json_array(text: str) -> str | None:
    """Pull the JSON array out of a reply, fenced (```json ...```) or bare."""
    match = _FENCED_JSON.search(text)
    if match:
        return match.group(1) or match.group(2)
    stripped = text.strip()
    if stripped.startswith("[") and stripped.endswith("]"):
        return stripped
    return None


def parse_sections(response_text: str, book_title: str) -> list[StructuredSection]:
    """Parse a model reply into section records.

    Raises:
        InvalidResponseError: no JSON array, invalid JSON, or records off-schema
    """
    json_string = extract_json_array(response_text)
    if json_string is None:
        raise InvalidResponseError("Failed to extract a JSON array from the model response")

    try:
        data = json.loads(json_string)
    except json.JSONDecodeError as e:
        raise InvalidResponseError(f"Invalid JSON: {e}") from e

    if not isinstance(data, list):
        raise InvalidResponseError(f"Expected a JSON array, got {type(data).__name__}")

    sections = []
    for i, item in enumerate(data):
        try:
            section = StructuredSection.model_validate(item)
        except ValidationError as e:
            raise InvalidResponseError(f"Record {i} does not match the section schema: {e}") from e
        if not section.book_title:
            section.book_title = book_title
        sections.append(section)
    return sections


def signals_completion(response_text: str) -> bool:
    """True for a sentinel reply. A reply carrying a JSON array is never one,
    even if a chapter's text happens to contain the phrase."""
    if COMPLETION_SENTINEL not in response_text.lower():
        return False
    return extract_json_array(response_text) is None


class StructuringAgent:
    """Drive the chat model one chapter per turn, checkpointing as it goes.

    Correctness depends only on the checkpoint log: every resume or context
    reset derives its prompt from the log's last record, never from the
    abandoned conversation.
    """

    MAX_TURNS = 50
    MAX_RETRIES = 3
    RATE_LIMIT_WAIT_SECONDS = 65.0
    BACKOFF_BASE_SECONDS = 5.0
    SNIPPET_CHARS = 200

    def __init__(
        self,
        client: ChatClient,
        checkpoint: CheckpointLog,
        book_title: str,
        max_turns: int = MAX_TURNS,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.client = client
        self.checkpoint = checkpoint
        self.book_title = book_title
        self.max_turns = max_turns
        self.sleep = sleep

    # -------------------------------------------------------------------------
    # Prompts
    # -------------------------------------------------------------------------

    def _resume_prompt(self, book_text: str, reason: str = "") -> str:
        """Build a resumption prompt from the last durable record.

        Raises:
            StructuringError: the log is empty, so there is nothing to resume from
        """
        _, last = self.checkpoint.load_all()
        if last is None:
            raise StructuringError(
                "Structuring failed on the very first chapter and there is no checkpoint to resume from"
            )
        snippet = last.content[-self.SNIPPET_CHARS:].replace("\n", " ")
        return RESUME_PROMPT.format(
            reason=reason,
            subsection_title=last.subsection_title,
            chapter_title=last.chapter_title,
            snippet=snippet,
            book_text=book_text,
        )

    # -------------------------------------------------------------------------
    # Transport
    # -------------------------------------------------------------------------

    def retry_wait(self, error: ChatServiceError, retry: int) -> float:
        """Seconds to wait before retry number ``retry`` (1-based)."""
        if error.is_rate_limited:
            return self.RATE_LIMIT_WAIT_SECONDS
        return self.BACKOFF_BASE_SECONDS * (2 ** (retry - 1))

    def _send_with_retry(self, session: ChatSession, prompt: str) -> str:
        """One initial attempt plus up to MAX_RETRIES retries.

        Raises:
            ChatServiceError: the last error once retries are exhausted
        """
        attempts = self.MAX_RETRIES + 1
        for attempt in range(1, attempts + 1):
            try:
                return session.send_message(prompt)
            except ChatServiceError as e:
                log.warning(f"Chat call failed (attempt {attempt}/{attempts}): {e}")
                if attempt == attempts:
                    raise
                wait = self.retry_wait(e, attempt)
                if e.is_rate_limited:
                    log.info(f"Rate limit hit. Waiting a fixed {wait:.0f}s")
                else:
                    log.info(f"Backing off for {wait:.0f}s")
                self.sleep(wait)

        raise AssertionError("unreachable")

    # -------------------------------------------------------------------------
    # Main loop
    # -------------------------------------------------------------------------

    def run(self, book_text: str) -> StructuringResult:
        """Populate the checkpoint log with the book's chapters.

        Raises:
            StructuringError: the first turn fails with nothing checkpointed
        """
        system_instruction = build_system_prompt(self.book_title)
        records, last = self.checkpoint.load_all()
        start_count = len(records)
        last_chapter_title = last.chapter_title if last else None

        if last is not None:
            log.info(f"Resuming. Last checkpointed chapter was \"{last.chapter_title}\"")
            prompt = self._resume_prompt(book_text)
        else:
            log.info("Starting a fresh structuring session")
            prompt = FIRST_PROMPT.format(book_text=book_text)

        session = self.client.start_session(system_instruction)
        added = 0
        turn = 1
        reason = ""

        while turn <= self.max_turns:
            log.info(f"Turn {turn}: asking for the next chapter...")

            try:
                response_text = self._send_with_retry(session, prompt)
            except ChatServiceError:
                log.warning("CONTEXT RESET: persistent API failure, starting a fresh conversation")
                prompt = self._resume_prompt(book_text, RESET_REASON_API)
                session = self.client.start_session(system_instruction)
                turn += 1
                continue

            if signals_completion(response_text):
                reason = "model signalled completion"
                log.info("Model signalled completion")
                break

            try:
                sections = parse_sections(response_text, self.book_title)
            except InvalidResponseError as e:
                log.error(f"Error processing model response: {e}")
                log.debug(f"Raw model response: {response_text}")
                log.warning("CONTEXT RESET: invalid output, starting a fresh conversation")
                prompt = self._resume_prompt(book_text, RESET_REASON_INVALID)
                session = self.client.start_session(system_instruction)
                turn += 1
                continue

            if not sections:
                reason = "model returned an empty array"
                log.info("Model returned an empty array, treating as completion")
                break

            new_title = sections[0].chapter_title
            if new_title == last_chapter_title:
                reason = f"model repeated chapter \"{new_title}\""
                log.warning(f"Model returned the same chapter (\"{new_title}\") twice. Ending loop.")
                break

            log.info(f"Received chapter \"{new_title}\" ({len(sections)} sections)")
            self.checkpoint.append(sections)
            added += len(sections)
            last_chapter_title = new_title

            prompt = NEXT_PROMPT.format(book_text=book_text)
            turn += 1

        else:
            log.warning(f"Reached the maximum of {self.max_turns} turns. The extraction may be incomplete.")
            return StructuringResult(
                status=StructuringStatus.INCOMPLETE,
                turns=self.max_turns,
                sections_added=added,
                total_sections=start_count + added,
                reason=f"turn limit ({self.max_turns}) reached",
            )

        log.info(f"Structuring complete: {start_count + added} total sections")
        return StructuringResult(
            status=StructuringStatus.COMPLETE,
            turns=turn,
            sections_added=added,
            total_sections=start_count + added,
            reason=reason,
        )
