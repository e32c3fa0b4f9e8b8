"""
Display Helpers - Project the last server response into a client view

Clients own nothing authoritative: every view is derived from the last
response alone and replaced wholesale by the next one. Used by the
console harness and by web clients that want the same labels.
"""

from typing import Dict, Any, List, Optional


# Field name mappings: field id -> Human Readable Label
FIELD_LABELS = {
    'variables': 'Decision Variables',
    'objectives': 'Objectives',
    'constraints': 'Constraints',
    'pressure_unit': 'Pressure Unit',
    'temperature_unit': 'Temperature Unit',
    'algorithm': 'Solver Algorithm',
    'time_limit': 'Time Limit',
}

# Wire status -> label shown to users ('active' reads as "missing" to a user)
STATUS_DISPLAY_LABELS = {
    'pending': 'pending',
    'active': 'missing',
    'resolved': 'resolved',
    'default': 'default',
    'conflict': 'conflict',
}

STATUS_ICONS = {
    'pending': '…',
    'active': '⚠️',
    'resolved': '✅',
    'default': '🅳',
    'conflict': '❌',
}


def format_field_name(field_id: str) -> str:
    """
    Convert field id to human-readable label.

    Examples:
        >>> format_field_name('pressure_unit')
        'Pressure Unit'
        >>> format_field_name('bounds_for_x1')
        'Bounds for x1'
    """
    if field_id in FIELD_LABELS:
        return FIELD_LABELS[field_id]

    if field_id.startswith('bounds_for_'):
        return f"Bounds for {field_id[len('bounds_for_'):]}"

    # Fallback: capitalize and replace underscores
    return field_id.replace('_', ' ').title()


def format_attempts(attempts: int, max_attempts: int) -> str:
    """'1/3' style attempts label"""
    return f"{attempts}/{max_attempts}"


def project_client_view(response: Dict[str, Any]) -> Dict[str, Any]:
    """
    Derive everything a client renders from one response body.

    Args:
        response: ClarificationResponse.to_json() (or an HTTP response body)

    Returns:
        dict: {
            'session_id', 'done', 'current_field', 'question', 'hint',
            'examples', 'suggested_default', 'attempts_left',
            'rows': [{'id', 'label', 'status', 'icon', 'attempts'}],
            'editable_fields', 'can_edit_last', 'conflicts',
            'history', 'solver_input'
        }
    """
    request = response.get('clarification_request') or {}
    current_field = request.get('current_field')

    fmt = (request.get('expected_format') or {}).get(current_field) or {}
    questions = request.get('questions') or []

    rows = []
    for entry in request.get('ordered_missing') or []:
        status = entry.get('status')
        rows.append({
            'id': entry.get('id'),
            'label': format_field_name(entry.get('id', '')),
            'status': STATUS_DISPLAY_LABELS.get(status, status),
            'icon': STATUS_ICONS.get(status, ''),
            'attempts': format_attempts(entry.get('attempts', 0), entry.get('max_attempts', 0)),
        })

    return {
        'session_id': response.get('session_id'),
        'done': not response.get('need_clarification', False),
        'current_field': current_field,
        'question': questions[0] if questions else None,
        'hint': fmt.get('hint'),
        'examples': list(fmt.get('examples') or []),
        'suggested_default': (request.get('suggested_defaults') or {}).get(current_field),
        'attempts_left': request.get('attempts_left', 0),
        'rows': rows,
        'editable_fields': list(request.get('editable_fields') or []),
        'can_edit_last': bool(request.get('can_edit_last', False)),
        'conflicts': list(request.get('conflicts') or []),
        'history': list(response.get('conversation_history') or []),
        'solver_input': response.get('solver_input'),
    }


def format_status_table(view: Dict[str, Any]) -> List[str]:
    """
    Render the field status rows of a client view as text lines.

    Examples:
        ✅ Decision Variables       resolved   0/3
        ⚠️ Bounds for x1            missing    1/3
    """
    lines = []
    for row in view.get('rows', []):
        marker = '  <- current' if row['id'] == view.get('current_field') else ''
        lines.append(f"{row['icon']} {row['label']:<24} {row['status']:<9} {row['attempts']}{marker}")
    return lines


def format_outcome_message(response: Dict[str, Any]) -> Optional[str]:
    """One-line summary of what happened to the last answer, None if nothing to report"""
    if response.get('auto_default'):
        return response.get('reason') or f"Default used for {response.get('field_id')}"
    if response.get('accepted') is False:
        return response.get('reason')
    if response.get('reset_fields'):
        return f"Reopened {response.get('field_id')}; reset {', '.join(response['reset_fields'])}"
    return None
