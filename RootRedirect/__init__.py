import azure.functions as func

RELAY_ROUTE = "/api/easypim-relay"


def main(req: func.HttpRequest) -> func.HttpResponse:
    # Bare /api has no handler of its own; send callers to the relay
    return func.HttpResponse(
        status_code=302,
        headers={"Location": RELAY_ROUTE},
    )
