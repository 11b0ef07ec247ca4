class BufferedIncrementsError(Exception):
    """Errore base del buffer di incrementi."""


class InvalidCounterKeyError(BufferedIncrementsError):
    """Campo dell'accumulatore che non si riesce a riportare a (entity_id, field_path)."""


class FieldPathConflictError(BufferedIncrementsError):
    """Il field path attraversa un valore che non è un oggetto, o punta a un valore non intero."""
