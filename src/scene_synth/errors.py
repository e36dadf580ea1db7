"""Exception hierarchy for scene synthesis."""


class SceneSynthError(Exception):
    """Base exception for scene synthesis errors."""
    pass


class UngeometriedObjectError(SceneSynthError):
    """A placed object's type resolves to no usable mesh."""
    pass


class CatalogError(SceneSynthError):
    """Catalog is empty or an explicit lookup failed."""
    pass


class SceneLoadError(SceneSynthError):
    """A persisted scene record could not be read."""
    pass


class ScoresNotEvaluatedError(SceneSynthError):
    """Cached scores were read after the scene changed."""
    pass
