"""TutorsPool booking lifecycle and availability reconciliation engine."""
