from shared.helper.HelperConfig import HelperConfig
from shared.clients.rag.RAGClientInterface import RAGClientInterface

SUPPORTED_ENGINES = ("Qdrant",)


class RAGClientManager:
    """
    Builds the vector index client selected by RAG_ENGINE.

    One index holds both the general knowledge base and every conversation's
    uploaded documents; the payload filters keep them apart.
    """

    def __init__(self, helper_config: HelperConfig):
        self.helper_config = helper_config
        self.logging = helper_config.get_logger()
        self.client = self._initialize_client()

    def _get_engine_from_env(self) -> str:
        """
        Reads the RAG engine name from ENV configuration.

        Returns:
            str: Capitalised engine name (e.g. "Qdrant").

        Raises:
            ValueError: If RAG_ENGINE is not set or names an unknown engine.
        """
        engine = self.helper_config.get_string_val("RAG_ENGINE").strip().lower().capitalize()
        if engine not in SUPPORTED_ENGINES:
            raise ValueError("Unsupported RAG engine '%s'. Supported: %s" % (engine, ", ".join(SUPPORTED_ENGINES)))
        return engine

    def _initialize_client(self) -> RAGClientInterface:
        engine = self._get_engine_from_env()
        class_name = f"RAGClient{engine}"
        module = __import__(
            f"shared.clients.rag.{engine.lower()}.{class_name}",
            fromlist=[class_name],
        )
        client = getattr(module, class_name)(helper_config=self.helper_config)
        self.logging.info("Using RAG engine %s", engine)
        return client

    def get_client(self) -> RAGClientInterface:
        """
        Returns the instantiated RAG client.
        """
        return self.client
