"""Declarative base for ModelGate tables."""

from sqlalchemy.orm import declarative_base

Base = declarative_base()
