"""
Knowledge-base retrieval for insight prompts

Token-overlap scoring over stored reference documents. Retrieval is best
effort: any failure yields an empty context rather than an error.
"""
import re
from typing import List, Optional, Tuple

from app.config import get_settings
from app.models.base import SessionLocal
from app.models.knowledge import KnowledgeDocument
from app.utils.logger import log

settings = get_settings()


STOP_WORDS = {
    "the", "a", "an", "to", "of", "in", "on", "for", "is", "are", "was", "were", "be", "as", "at",
    "from", "by", "with", "and", "or", "that", "this", "it", "your", "you", "our", "these", "each",
    "data", "analyze", "following", "specific", "insight", "insights", "generate",
}


def tokenize_text(text: str) -> List[str]:
    tokens = [t for t in re.findall(r"[a-zA-Z][a-zA-Z0-9_]+", (text or "").lower()) if len(t) > 2]
    return [t for t in tokens if t not in STOP_WORDS]


def score_document(query_tokens: List[str], document_text: str) -> float:
    if not query_tokens:
        return 0.0
    doc_tokens = set(tokenize_text(document_text))
    if not doc_tokens:
        return 0.0
    query = set(query_tokens)
    return len(query & doc_tokens) / len(query)


class RagService:
    """Context retrieval collaborator"""

    def __init__(self, session_factory=SessionLocal, top_k: Optional[int] = None, max_chars: Optional[int] = None):
        self.session_factory = session_factory
        self.top_k = top_k or settings.rag_top_k
        self.max_chars = max_chars or settings.rag_max_chars

    def add_document(self, title: str, content: str) -> int:
        with self.session_factory() as db:
            document = KnowledgeDocument(title=title, content=content)
            db.add(document)
            db.commit()
            log.info(f"Added knowledge document '{title}'")
            return document.id

    def _rank(self, query: str) -> List[Tuple[float, KnowledgeDocument]]:
        query_tokens = tokenize_text(query)
        with self.session_factory() as db:
            documents = db.query(KnowledgeDocument).all()

        scored = [(score_document(query_tokens, f"{d.title} {d.content}"), d) for d in documents]
        scored = [item for item in scored if item[0] > 0]
        scored.sort(key=lambda item: item[0], reverse=True)
        return scored[:self.top_k]

    async def retrieve_context(self, query: str) -> str:
        """Reference text relevant to the query, or "" when nothing is found"""
        try:
            ranked = self._rank(query)
        except Exception as e:
            log.error(f"Knowledge retrieval failed: {str(e)}")
            return ""

        parts = []
        used = 0
        for _, document in ranked:
            block = f"### {document.title}\n{document.content.strip()}"
            if used + len(block) > self.max_chars:
                remaining = self.max_chars - used
                if remaining > 200:
                    parts.append(block[:remaining])
                break
            parts.append(block)
            used += len(block) + 2

        context = "\n\n".join(parts)
        log.debug(f"Retrieved {len(parts)} knowledge documents ({len(context)} chars)")
        return context
