"""Chunking of fetched event pages for extraction.

Event details sit at the top of a page and speakers sit under their own
headings, often on a sub-page. Chunks are therefore ordered: head of the main
page, then every window that starts at a speaker heading, then the rest of
the text in fixed-size pieces.
"""

from dataclasses import dataclass

from eventscout.services.event_models import FetchedPage

from .speakers import is_speaker_section

MAX_HEADING_CHARS = 120


@dataclass(frozen=True)
class Chunk:
    """A slice of one page's text."""

    url: str
    start: int
    text: str
    is_speaker_section: bool = False

    def render(self) -> str:
        return f"[Source: {self.url}]\n{self.text}"


def fixed_chunks(text: str, chunk_size: int = 4000, overlap: int = 200) -> list[tuple[int, str]]:
    """Split text into overlapping fixed-size pieces.

    Args:
        text: Text to split
        chunk_size: Maximum characters per piece
        overlap: Characters shared by consecutive pieces

    Returns:
        (start offset, piece) pairs
    """
    if not text:
        return []
    step = max(1, chunk_size - max(0, min(overlap, chunk_size - 1)))
    pieces = []
    for start in range(0, len(text), step):
        pieces.append((start, text[start : start + chunk_size]))
        if start + chunk_size >= len(text):
            break
    return pieces


def speaker_heading_offsets(text: str) -> list[int]:
    """Character offsets of short lines that introduce speaker content."""
    offsets = []
    position = 0
    for line in text.splitlines(keepends=True):
        stripped = line.strip().lstrip("#").strip()
        if stripped and len(stripped) <= MAX_HEADING_CHARS and is_speaker_section(stripped):
            offsets.append(position)
        position += len(line)
    return offsets


def chunk_page(page: FetchedPage, chunk_size: int = 4000, overlap: int = 200) -> tuple[list[Chunk], list[Chunk]]:
    """Split one page into speaker-section chunks and the remaining chunks.

    Returns:
        (speaker chunks, other chunks); other chunks start with the page head
    """
    text = page.content
    speaker_chunks: list[Chunk] = []
    covered_until = -1
    for offset in speaker_heading_offsets(text):
        if offset < covered_until:
            continue
        speaker_chunks.append(
            Chunk(page.url, offset, text[offset : offset + chunk_size], is_speaker_section=True),
        )
        covered_until = offset + chunk_size - overlap

    covered = [(c.start, c.start + len(c.text)) for c in speaker_chunks]
    other_chunks = []
    for start, piece in fixed_chunks(text, chunk_size, overlap):
        end = start + len(piece)
        if any(s <= start and end <= e for s, e in covered):
            continue
        other_chunks.append(Chunk(page.url, start, piece))
    return speaker_chunks, other_chunks


def build_chunks(
    main: FetchedPage,
    subpages: list[FetchedPage],
    chunk_size: int = 4000,
    overlap: int = 200,
) -> list[Chunk]:
    """Order chunks of an event page and its sub-pages for extraction.

    Args:
        main: The event's main page
        subpages: Speaker/agenda sub-pages
        chunk_size: Maximum characters per chunk
        overlap: Overlap of fixed-size chunks

    Returns:
        Main page head, speaker chunks, then everything else
    """
    main_speakers, main_rest = chunk_page(main, chunk_size, overlap)
    head = main_rest[:1]
    ordered: list[Chunk] = head + main_speakers
    rest = main_rest[1:]

    for page in subpages:
        page_speakers, page_rest = chunk_page(page, chunk_size, overlap)
        ordered.extend(page_speakers)
        if not page_speakers:
            # A speaker sub-page without headings is still speaker content
            ordered.extend(page_rest[:1])
            page_rest = page_rest[1:]
        rest.extend(page_rest)

    return ordered + rest
