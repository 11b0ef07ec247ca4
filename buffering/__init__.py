"""
Buffer di incrementi numerici con flush coordinato.

Questo modulo contiene:
- IncrementBuffer: accumula gli incrementi in un hash Redis (HINCRBY)
- LockCoordinator: lease distribuito su Redis con rinnovo e rilascio condizionato
- BatchFlusher: svuota l'accumulatore e scrive un bulk update sui documenti
- BufferedIncrements: facciata che compone i pezzi con lo scheduler periodico
"""
