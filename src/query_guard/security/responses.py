"""
Security Responses
==================

Localized, schema-free messages shown to the user when a request is
blocked, with alternative things they can ask instead.
"""

from dataclasses import dataclass, field
from typing import Optional

from query_guard.models import ViolationType
from query_guard.observability.logging_config import get_logger

logger = get_logger(__name__)

SUPPORTED_LANGUAGES = ("en", "es")

GENERIC_REASON = {
    "en": "For security reasons, I cannot provide that information or perform that action.",
    "es": "Por seguridad, no puedo proporcionar esa información ni realizar esa acción.",
}

HELP_HEADER = {
    "en": "I can help you with:",
    "es": "Puedo ayudarte con:",
}

REASONS: dict[ViolationType, dict[str, str]] = {
    ViolationType.CROSS_TENANT_ACCESS: {
        "en": "I can only read data from your own business location",
        "es": "solo puedo consultar datos de tu propia sucursal",
    },
    ViolationType.SCHEMA_DISCOVERY: {
        "en": "I cannot describe how the data is stored internally",
        "es": "no puedo describir cómo se almacenan los datos internamente",
    },
    ViolationType.SENSITIVE_TABLE_ACCESS: {
        "en": "I cannot read sensitive staff or configuration data",
        "es": "no puedo leer datos sensibles del personal o de configuración",
    },
    ViolationType.SQL_INJECTION_ATTEMPT: {
        "en": "the request contains patterns that could be harmful",
        "es": "la solicitud contiene patrones que podrían ser dañinos",
    },
    ViolationType.PROMPT_INJECTION: {
        "en": "I cannot follow instructions that try to change how I work",
        "es": "no puedo seguir instrucciones que intenten cambiar cómo funciono",
    },
    ViolationType.RATE_LIMIT_EXCEEDED: {
        "en": "you have reached the query limit for now",
        "es": "alcanzaste el límite de consultas por ahora",
    },
    ViolationType.MISSING_TENANT_FILTER: {
        "en": "I can only run queries scoped to your business location",
        "es": "solo puedo ejecutar consultas limitadas a tu sucursal",
    },
    ViolationType.UNAUTHORIZED_TABLE: {
        "en": "your role does not have access to that information",
        "es": "tu rol no tiene acceso a esa información",
    },
    ViolationType.PII_ACCESS_ATTEMPT: {
        "en": "I cannot return personal contact data without authorization",
        "es": "no puedo devolver datos personales de contacto sin autorización",
    },
    ViolationType.DANGEROUS_OPERATION: {
        "en": "I can only read data, never change or delete it",
        "es": "solo puedo leer datos, nunca modificarlos ni borrarlos",
    },
}

SUGGESTIONS: dict[ViolationType, dict[str, list[str]]] = {
    ViolationType.CROSS_TENANT_ACCESS: {
        "en": [
            "Ask about data from your current location",
            "Switch location from the main menu if you manage several",
            "Ask an administrator for consolidated reports",
        ],
        "es": [
            "Pregunta por datos de tu sucursal actual",
            "Cambia de sucursal desde el menú principal si administras varias",
            "Pide a un administrador los reportes consolidados",
        ],
    },
    ViolationType.SCHEMA_DISCOVERY: {
        "en": [
            "Ask about your sales, orders, products or customers",
            "Request statistics for your location",
            "Ask about available inventory",
        ],
        "es": [
            "Pregunta por tus ventas, órdenes, productos o clientes",
            "Solicita estadísticas de tu sucursal",
            "Consulta el inventario disponible",
        ],
    },
    ViolationType.SENSITIVE_TABLE_ACCESS: {
        "en": [
            "Ask for aggregated team statistics",
            "Review the permissions of your own role",
            "Ask an administrator for staff details",
        ],
        "es": [
            "Pide estadísticas agregadas del equipo",
            "Revisa los permisos de tu propio rol",
            "Pide a un administrador los datos del personal",
        ],
    },
    ViolationType.SQL_INJECTION_ATTEMPT: {
        "en": [
            "Rephrase the question in simpler words",
            "Ask a specific question about sales, products or orders",
            "Use the dashboard for predefined reports",
        ],
        "es": [
            "Reformula la pregunta con palabras más simples",
            "Haz una pregunta concreta sobre ventas, productos u órdenes",
            "Usa el dashboard para reportes predefinidos",
        ],
    },
    ViolationType.PROMPT_INJECTION: {
        "en": [
            "Ask a direct question about your business data",
            "Ask about sales, inventory, orders or customers",
            "Request a specific report for your location",
        ],
        "es": [
            "Haz una pregunta directa sobre los datos de tu negocio",
            "Pregunta por ventas, inventario, órdenes o clientes",
            "Solicita un reporte específico de tu sucursal",
        ],
    },
    ViolationType.RATE_LIMIT_EXCEEDED: {
        "en": [
            "Wait a few minutes before asking again",
            "Use the dashboard for quick lookups",
            "Combine several questions into one",
        ],
        "es": [
            "Espera unos minutos antes de volver a preguntar",
            "Usa el dashboard para consultas rápidas",
            "Combina varias preguntas en una sola",
        ],
    },
    ViolationType.MISSING_TENANT_FILTER: {
        "en": [
            "Ask about data from your current location",
            "Use phrases such as \"at my location\"",
            "Results are filtered to your location automatically",
        ],
        "es": [
            "Pregunta por datos de tu sucursal actual",
            "Usa frases como \"en mi sucursal\"",
            "Los resultados se filtran a tu sucursal automáticamente",
        ],
    },
    ViolationType.UNAUTHORIZED_TABLE: {
        "en": [
            "Ask about products, sales or orders",
            "Ask your manager for access to that information",
            "Review what your current role can see",
        ],
        "es": [
            "Pregunta por productos, ventas u órdenes",
            "Pide a tu gerente acceso a esa información",
            "Revisa qué puede ver tu rol actual",
        ],
    },
    ViolationType.PII_ACCESS_ATTEMPT: {
        "en": [
            "Ask for aggregated statistics without personal data",
            "Ask an administrator for specific records if needed",
            "Use the anonymized dashboard reports",
        ],
        "es": [
            "Pide estadísticas agregadas sin datos personales",
            "Pide a un administrador registros específicos si los necesitas",
            "Usa los reportes anonimizados del dashboard",
        ],
    },
    ViolationType.DANGEROUS_OPERATION: {
        "en": [
            "Ask read-only questions about your data",
            "Use the matching screens to change data",
            "Make changes from the dashboard, not from chat",
        ],
        "es": [
            "Haz preguntas de solo lectura sobre tus datos",
            "Usa las pantallas correspondientes para modificar datos",
            "Haz los cambios desde el dashboard, no desde el chat",
        ],
    },
}


@dataclass
class SecurityResponse:
    """User-facing block message."""

    violation_type: ViolationType
    message: str
    suggestions: list[str] = field(default_factory=list)


def _language(language: str) -> str:
    return language if language in SUPPORTED_LANGUAGES else "en"


def reason_for(violation_type: ViolationType, language: str = "en") -> str:
    lang = _language(language)
    reason = REASONS.get(violation_type)
    if reason is None:
        return GENERIC_REASON[lang]
    prefix = "For security reasons" if lang == "en" else "Por seguridad"
    return f"{prefix}, {reason[lang]}."


def suggestions_for(violation_type: ViolationType, language: str = "en") -> list[str]:
    return list(SUGGESTIONS.get(violation_type, {}).get(_language(language), []))


def security_response(
    violation_type: ViolationType,
    language: str = "en",
    context: Optional[str] = None,
) -> SecurityResponse:
    """
    Build the block message for a violation.

    Args:
        violation_type: Classification of the violation
        language: "en" or "es"; anything else falls back to English
        context: Optional extra sentence appended to the message

    Returns:
        SecurityResponse whose text never names tables, columns or SQL
    """
    lang = _language(language)
    suggestions = suggestions_for(violation_type, lang)
    parts = [reason_for(violation_type, lang)]
    if suggestions:
        parts.append(HELP_HEADER[lang] + "\n" + "\n".join(f"- {s}" for s in suggestions))
    if context:
        parts.append(context)

    logger.warning("security_violation_response", violation_type=violation_type.value, language=lang)
    return SecurityResponse(
        violation_type=violation_type,
        message="\n\n".join(parts),
        suggestions=suggestions,
    )
