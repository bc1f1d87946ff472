"""Kafka producer, consumer-group subscriber and topic admin."""
