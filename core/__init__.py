"""
Core functionality per buffered-increments.

Questo modulo contiene:
- Configurazione (config.py)
- Database e collezioni documenti (database.py)
- Client Redis (redis_client.py)
- Scheduler del flush (scheduler.py)
- Logging e contatori diagnostici (logger.py, diagnostics_state.py)
"""
