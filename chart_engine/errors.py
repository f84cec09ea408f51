class ChartIQError(Exception):
    """Erreur de base du pipeline ChartIQ."""


class ChartCaptureError(ChartIQError):
    """La capture d'écran n'a pas produit de fichier exploitable."""


class ChartImageError(ChartIQError):
    """Une référence de graphique ne peut pas être lue depuis le disque."""


class MessageValidationError(ChartIQError, ValueError):
    pass


class MessageNotFoundError(ChartIQError, LookupError):
    pass


class AnalysisNotFoundError(ChartIQError, LookupError):
    pass


class InvalidStatusTransitionError(ChartIQError, ValueError):
    pass


class SymbolSearchError(ChartIQError):
    pass
