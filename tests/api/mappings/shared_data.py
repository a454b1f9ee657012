from typing import Any, Dict, List, Optional


TEST_USER_ID = "005USER"
TEST_INSTANCE_URL = "https://example.my.salesforce.com"
TEST_FORM_VERSION_ID = "fv-1"
TEST_TOKEN = "crm-token"

CREATE_ACCOUNT_NODE = {
    "nodeId": "create_account",
    "type": "CreateUpdate",
    "order": 1,
    "salesforceObject": "Account",
    "fieldMappings": [{"formFieldId": "name", "salesforceField": "Name"}],
}

SAVED_FORM_RECORDS = [
    {
        "Id": "form-1",
        "FormVersions": [
            {
                "Id": TEST_FORM_VERSION_ID,
                "Mappings": {"Mappings": {"create_account": {**CREATE_ACCOUNT_NODE, "actionType": "CreateUpdate"}}},
            }
        ],
    }
]


def run_body(
    nodes: Optional[List[Dict[str, Any]]],
    form_data: Optional[Dict[str, Any]] = None,
    **overrides: Any,
) -> Dict[str, Any]:
    body = {
        "userId": TEST_USER_ID,
        "instanceUrl": TEST_INSTANCE_URL,
        "formVersionId": TEST_FORM_VERSION_ID,
        "formData": form_data if form_data is not None else {"name": "Acme"},
        "nodes": nodes,
        "submissionId": "sub-1",
    }
    body.update(overrides)
    return body


def auth_headers(token: str = TEST_TOKEN) -> Dict[str, str]:
    return {"Authorization": f"Bearer {token}"}
