"""Service layer for SceneGate."""
