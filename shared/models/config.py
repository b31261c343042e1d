from pydantic import BaseModel


class EnvConfig(BaseModel):
    """
    A single environment setting a client declares as part of its configuration.

    The client prefixes the key with its type and engine, so env_key="BASE_URL"
    on the Ollama LLM client resolves to LLM_OLLAMA_BASE_URL.

    Attributes:
        env_key (str): Un-prefixed name of the environment variable.
        val_type (str): "string", "number", "bool" or "list".
        default (str | int | float | bool | list | None): Value used when the variable is unset.
            None marks the setting as required.
    """

    env_key: str
    val_type: str = "string"
    default: str | int | float | bool | list | None = None
