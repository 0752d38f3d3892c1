"""Unit Telemetry Service - colección, retención y acceso resiliente."""
