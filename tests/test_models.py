import pytest

from entra_console.models import (
    AssignedLicense,
    AuthenticationMethod,
    DirectoryUser,
    LicenseSku,
    MethodType,
    UserUpdate,
)

from conftest import make_license_detail, make_sku


@pytest.mark.parametrize(
    "odata_type, expected",
    [
        ("#microsoft.graph.microsoftAuthenticatorAuthenticationMethod", MethodType.AUTHENTICATOR_APP),
        ("#microsoft.graph.phoneAuthenticationMethod", MethodType.PHONE),
        ("#microsoft.graph.emailAuthenticationMethod", MethodType.EMAIL),
        ("#microsoft.graph.fido2AuthenticationMethod", MethodType.FIDO2),
        ("#microsoft.graph.windowsHelloForBusinessAuthenticationMethod", MethodType.WINDOWS_HELLO),
        ("#microsoft.graph.passwordAuthenticationMethod", MethodType.PASSWORD),
        ("#microsoft.graph.temporaryAccessPassAuthenticationMethod", MethodType.TEMPORARY_ACCESS_PASS),
        ("#microsoft.graph.softwareOathAuthenticationMethod", MethodType.OTHER),
        ("", MethodType.OTHER),
    ],
)
def test_method_type_classification(odata_type, expected):
    assert MethodType.from_discriminator(odata_type) is expected


def test_unknown_method_keeps_raw_label():
    method = AuthenticationMethod.from_graph(
        {"@odata.type": "#microsoft.graph.softwareOathAuthenticationMethod", "id": "m-1"}
    )
    assert method.label == "Other (softwareOathAuthenticationMethod)"
    assert not method.removable
    assert not method.is_password


def test_phone_method_description():
    method = AuthenticationMethod.from_graph(
        {
            "@odata.type": "#microsoft.graph.phoneAuthenticationMethod",
            "id": "3179e48a-750b-4051-897c-87b9720928f7",
            "phoneNumber": "+1 2065555555",
            "phoneType": "mobile",
        }
    )
    assert method.description == "Phone: +1 2065555555 (mobile)"
    assert method.method_type.endpoint == "phoneMethods"


def test_fido2_description_includes_model():
    method = AuthenticationMethod.from_graph(
        {
            "@odata.type": "#microsoft.graph.fido2AuthenticationMethod",
            "id": "k-1",
            "displayName": "Red key",
            "model": "YubiKey 5",
        }
    )
    assert method.description == "FIDO2 security key: Red key [YubiKey 5]"


def test_sku_available_seats():
    sku = LicenseSku.from_graph(make_sku("sku-1", "ENTERPRISEPACK", prepaid=25, consumed=25))
    assert sku.available_units == 0
    assert not sku.has_available_seats

    sku = LicenseSku.from_graph(make_sku("sku-2", "EMS", prepaid=10, consumed=3))
    assert sku.available_units == 7
    assert sku.has_available_seats


def test_assigned_license_splits_service_plans():
    detail = make_license_detail(
        "sku-1",
        "ENTERPRISEPACK",
        plans=[("EXCHANGE_S_ENTERPRISE", "Success"), ("SWAY", "Disabled"), ("YAMMER", "PendingInput")],
    )
    assigned = AssignedLicense.from_graph(detail)
    assert assigned.enabled_service_plans == ["EXCHANGE_S_ENTERPRISE", "YAMMER"]
    assert assigned.disabled_service_plans == ["SWAY"]


def test_user_update_only_includes_set_fields():
    assert UserUpdate(job_title="Engineer").to_graph() == {"jobTitle": "Engineer"}
    assert UserUpdate(account_enabled=False).to_graph() == {"accountEnabled": False}
    assert UserUpdate().is_empty


def test_directory_user_label():
    user = DirectoryUser.from_graph({"id": "u1", "userPrincipalName": "jane@contoso.com", "displayName": "Jane"})
    assert user.label == "Jane <jane@contoso.com>"
