from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    PROJECT_NAME: str = "Land Rentals API"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # PostgreSQL
    POSTGRES_HOST: str = "localhost"
    POSTGRES_PORT: int = 5432
    POSTGRES_USER: str = "rentals"
    POSTGRES_PASSWORD: str = "rentals"
    POSTGRES_DB: str = "rentals"

    @property
    def database_url(self) -> str:
        return (
            f"postgresql+asyncpg://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )

    # Indexers
    MARKETPLACE_SUBGRAPH_URL: str = (
        "https://api.thegraph.com/subgraphs/name/decentraland/marketplace-goerli"
    )
    RENTALS_SUBGRAPH_URL: str = (
        "https://api.thegraph.com/subgraphs/name/decentraland/rentals-ethereum-goerli"
    )
    SUBGRAPH_RATE_LIMIT: int = 10  # Requests per second
    SUBGRAPH_TIMEOUT_SEC: int = 30
    SUBGRAPH_PAGE_SIZE: int = 1000

    # Chain
    CHAIN_ID: int = 5
    NETWORK: str = "ETHEREUM"
    RENTALS_CONTRACT_ADDRESS: str = ""  # Overrides the registry entry for CHAIN_ID

    # Sync jobs
    JOB_INTERVAL_SEC: int = 5 * 60
    JOB_STARTUP_DELAY_SEC: int = 30

    CORS_ORIGIN: str = "*"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


settings = Settings()
