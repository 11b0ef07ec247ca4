"""
Configurazione per buffered-increments usando pydantic-settings.

Gestisce le variabili d'ambiente per Redis, database e flush periodico.
"""
import logging
from typing import Optional
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict
from dotenv import load_dotenv

# Carica .env
load_dotenv()

logger = logging.getLogger(__name__)


class BufferConfig(BaseSettings):
    """Configurazione completa del buffer di incrementi."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Store
    redis_url: str = Field(default="", description="URL connessione Redis (shared store)")
    database_url: str = Field(default="", description="URL connessione PostgreSQL (persistent store)")

    # Collezione e chiavi Redis
    collection_name: str = Field(default="users", description="Collezione documenti da aggiornare")
    buffer_key_prefix: str = Field(default="buffered_increments", description="Prefisso hash accumulatore")
    lock_key_prefix: str = Field(default="flush_lock", description="Prefisso chiave lock di flush")

    # Flush
    flush_interval_ms: int = Field(default=1000, gt=0, description="Intervallo flush in millisecondi")
    lease_duration_ms: Optional[int] = Field(default=None, gt=0, description="Durata lease lock (default: max(5000, 3 x intervallo))")
    renew_interval_ms: Optional[int] = Field(default=None, gt=0, description="Intervallo rinnovo lease (default: lease / 5)")
    scheduler_timezone: str = Field(default="UTC", description="Timezone scheduler APScheduler")

    # Info servizio
    service_name: str = Field(default="flusher", description="Nome servizio nei log")

    def validate_config(self) -> bool:
        """Valida configurazione critica."""
        errors = []

        if not self.redis_url:
            errors.append("REDIS_URL non configurato")

        if not self.database_url:
            errors.append("DATABASE_URL non configurato")

        if self.lease_duration_ms is not None and self.renew_interval_ms is not None:
            if self.renew_interval_ms >= self.lease_duration_ms:
                errors.append("RENEW_INTERVAL_MS deve essere minore di LEASE_DURATION_MS")

        if self.lease_duration_ms is not None and self.lease_duration_ms <= self.flush_interval_ms:
            # Non bloccante: un flush lento può sovrapporsi al tick successivo
            logger.warning(
                "LEASE_DURATION_MS (%s) non superiore a FLUSH_INTERVAL_MS (%s)",
                self.lease_duration_ms, self.flush_interval_ms
            )

        if errors:
            error_msg = "❌ Configurazione flusher mancante:\n" + "\n".join(f"  - {error}" for error in errors)
            logger.error(error_msg)
            raise ValueError(error_msg)

        logger.info("✅ Configurazione flusher validata con successo")
        return True


# Istanza globale configurazione
_config: BufferConfig | None = None


def get_config() -> BufferConfig:
    """Ottiene istanza configurazione (singleton)."""
    global _config
    if _config is None:
        _config = BufferConfig()
    return _config


def reset_config() -> None:
    """Dimentica la configurazione caricata (usato nei test)."""
    global _config
    _config = None
