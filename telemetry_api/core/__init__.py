"""Core - dominio de telemetría."""
