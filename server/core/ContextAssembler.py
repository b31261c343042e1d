import os

from shared.models.search import DocumentMatch, GeneralMatch

DOCUMENTS_HEADER = "=== UPLOADED DOCUMENTS (HIGHEST PRIORITY) ==="
DOCUMENTS_INSTRUCTION = (
    "The user uploaded the following documents to this conversation. "
    "Base your answer on them first and use the general knowledge below only to complement them."
)
GENERAL_HEADER = "=== GENERAL KNOWLEDGE BASE ==="


class ContextAssembler:
    """Builds the prompt context and source list from retrieval matches.

    Pure: no I/O, and equal inputs always give equal outputs.
    """

    @staticmethod
    def format_general(match: GeneralMatch) -> str:
        return f"Content: {match.text}\nSource: {match.source}"

    @staticmethod
    def format_document(match: DocumentMatch) -> str:
        return f"User Document ({match.file_name}): {match.text}"

    def assemble(self, general: list[GeneralMatch], documents: list[DocumentMatch]) -> tuple[str, list[str]]:
        """Merge both match lists into one context block.

        Args:
            general (list[GeneralMatch]): Knowledge base matches.
            documents (list[DocumentMatch]): Matches from the conversation's uploads.

        Returns:
            tuple[str, list[str]]: The context text and the deduplicated sources,
                general source basenames first, then document file names.
        """
        general_context = "\n\n".join(self.format_general(m) for m in general)
        document_context = "\n\n".join(self.format_document(m) for m in documents)

        if document_context:
            sections = [DOCUMENTS_HEADER, DOCUMENTS_INSTRUCTION, "", document_context]
            if general_context:
                sections += ["", GENERAL_HEADER, general_context]
            context = "\n".join(sections)
        else:
            context = general_context

        sources: list[str] = []
        for name in [os.path.basename(m.source) for m in general] + [m.file_name for m in documents]:
            if name and name not in sources:
                sources.append(name)
        return context, sources
