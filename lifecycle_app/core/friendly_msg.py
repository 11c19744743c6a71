FRIENDLY_MESSAGES = {
    "CircuitOpenError": "The payment provider is temporarily unavailable. Please try again shortly.",
    "ConnectError": "Unable to reach the payment provider. Please try again later.",
    "ConnectionError": "Unable to connect to a required service. Please try again later.",
    "TimeoutError": "The request took too long. Please try again later.",
    "DatabaseError": "Temporary issue while accessing data. Please try again shortly.",
    "IntegrityError": "This record conflicts with existing data. Please refresh and retry.",
    "ValueError": "Invalid data received. Please check your input and try again.",
    "KeyError": "Some required information is missing.",
}


def get_friendly_message(error: Exception) -> str:
    for key, msg in FRIENDLY_MESSAGES.items():
        if key.lower() in type(error).__name__.lower():
            return msg
    return "Something went wrong on our end. Please try again."
