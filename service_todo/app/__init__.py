"""
Todo Service package.

Groups and their todo items stored in PostgreSQL, cached in Redis, with every
entity route gated by a token verification performed over Kafka:

- app.main: Application entrypoint that wires routes and lifecycle.
- app.verification: Correlator, response listener and request gate.
- app.cache: Redis backend and the cache-aside store.
- app.persistence: PostgreSQL repository.
- app.kafka: Producer, consumer-group subscriber and topic admin.

Module import must not perform network calls; all IO happens in route
handlers or the explicit startup sequence.
"""
