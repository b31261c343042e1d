from shared.helper.HelperConfig import HelperConfig
from shared.clients.llm.LLMClientInterface import LLMClientInterface

# Engine names as they appear in module paths (shared.clients.llm.<engine>.LLMClient<Engine>)
SUPPORTED_ENGINES = ("Ollama", "Openai")


class LLMClientManager:
    """Builds the LLM client selected by LLM_ENGINE.

    The same client serves embeddings (ingestion, retrieval) and chat
    completions (streaming driver), so both share one embedding space and
    one HTTP connection pool.
    """

    def __init__(self, helper_config: HelperConfig):
        self.helper_config = helper_config
        self.logging = helper_config.get_logger()
        self.client = self._initialize_client()

    def _get_engine_from_env(self) -> str:
        """Read the LLM engine name from env configuration.

        Returns:
            str: Capitalised engine name (e.g. "Ollama" or "Openai").

        Raises:
            ValueError: If LLM_ENGINE is not set or names an unknown engine.
        """
        engine = self.helper_config.get_string_val("LLM_ENGINE").strip().lower().capitalize()
        if engine not in SUPPORTED_ENGINES:
            raise ValueError("Unsupported LLM engine '%s'. Supported: %s" % (engine, ", ".join(SUPPORTED_ENGINES)))
        return engine

    def _initialize_client(self) -> LLMClientInterface:
        engine = self._get_engine_from_env()
        class_name = f"LLMClient{engine}"
        module = __import__(
            f"shared.clients.llm.{engine.lower()}.{class_name}",
            fromlist=[class_name],
        )
        client = getattr(module, class_name)(helper_config=self.helper_config)
        self.logging.info("Using LLM engine %s (embedding model: %s, chat model: %s)", engine, client.embed_model, client.get_chat_model())
        return client

    def get_client(self) -> LLMClientInterface:
        """Return the instantiated LLM client."""
        return self.client
