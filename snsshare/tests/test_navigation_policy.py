"""
Menus and redirect policy per access tier.
"""
import pytest

from snsshare.features.access.navigation import (
    FeatureArea,
    build_policy,
    feature_area,
)
from snsshare.models.access import AccessDecision, UserType
from snsshare.models.plan import PlanTier


def _decision(user_type, **kwargs):
    return AccessDecision(user_type=user_type, plan_display_name="x", **kwargs)


@pytest.mark.parametrize(
    "path,area",
    [
        ("/dashboard", FeatureArea.PERSONAL),
        ("/dashboard/", FeatureArea.PERSONAL),
        ("/dashboard/profile", FeatureArea.PERSONAL),
        ("/dashboard/corporate", FeatureArea.CORPORATE),
        ("/dashboard/corporate/users", FeatureArea.CORPORATE),
        ("/dashboard/corporate-member/links", FeatureArea.CORPORATE_MEMBER),
        ("/dashboard/admin/users", FeatureArea.ADMIN),
        ("/dashboard/subscription?tab=plans", FeatureArea.SHARED),
        ("/dashboard/something-new", FeatureArea.SHARED),
        ("/pricing", None),
        (None, None),
    ],
)
def test_feature_area(path, area):
    assert feature_area(path) == area


def test_corporate_admin_on_personal_path_redirects_to_corporate():
    policy = build_policy(_decision(UserType.CORPORATE), "/dashboard/profile")
    assert policy.should_redirect is True
    assert policy.redirect_path == "/dashboard/corporate"
    assert policy.default_path == "/dashboard/corporate"


def test_invited_member_on_personal_path_has_no_alternate():
    policy = build_policy(_decision(UserType.INVITED_MEMBER), "/dashboard/profile")
    assert policy.should_redirect is False
    assert policy.redirect_path is None
    assert policy.default_path == "/dashboard/corporate-member"


def test_invited_member_on_corporate_admin_path_redirects():
    policy = build_policy(_decision(UserType.INVITED_MEMBER), "/dashboard/corporate/users")
    assert policy.should_redirect is True
    assert policy.redirect_path == "/dashboard/corporate-member"


@pytest.mark.parametrize("path", ["/dashboard/corporate", "/dashboard/admin", "/dashboard/corporate-member"])
def test_personal_user_is_kept_out_of_corporate_and_admin(path):
    policy = build_policy(_decision(UserType.PERSONAL), path)
    assert policy.should_redirect is True
    assert policy.redirect_path == "/dashboard"


@pytest.mark.parametrize("user_type", list(UserType))
def test_subscription_page_never_redirects(user_type):
    kwargs = {"permanent_plan_type": PlanTier.PERSONAL} if user_type == UserType.PERMANENT else {}
    policy = build_policy(_decision(user_type, **kwargs), "/dashboard/subscription")
    assert policy.should_redirect is False


def test_admin_may_visit_any_area():
    for path in ("/dashboard", "/dashboard/corporate", "/dashboard/corporate-member", "/dashboard/admin/users"):
        assert build_policy(_decision(UserType.ADMIN), path).should_redirect is False


def test_permanent_corporate_user_gets_corporate_menu():
    decision = _decision(UserType.PERMANENT, permanent_plan_type=PlanTier.BUSINESS)
    policy = build_policy(decision, "/dashboard/corporate/users")
    assert policy.should_redirect is False
    assert policy.menu_items[0].href == "/dashboard/corporate"


def test_permanent_personal_user_gets_personal_menu():
    decision = _decision(UserType.PERMANENT, permanent_plan_type=PlanTier.PERSONAL)
    policy = build_policy(decision, "/dashboard/corporate")
    assert policy.redirect_path == "/dashboard"
    assert policy.menu_items[0].href == "/dashboard"


def test_outside_dashboard_never_redirects():
    policy = build_policy(_decision(UserType.PERSONAL), "/pricing")
    assert policy.should_redirect is False
    assert policy.redirect_path is None


@pytest.mark.parametrize("user_type", [UserType.CORPORATE, UserType.INVITED_MEMBER, UserType.PERSONAL, UserType.ADMIN])
def test_following_redirect_is_stable(user_type):
    decision = _decision(user_type)
    first = build_policy(decision, "/dashboard/admin/users")
    target = first.redirect_path or "/dashboard/admin/users"
    assert build_policy(decision, target).should_redirect is False


def test_menu_dividers_are_anchors():
    policy = build_policy(_decision(UserType.ADMIN))
    dividers = [item for item in policy.menu_items if item.is_divider]
    assert dividers
    assert all(item.href.startswith("#") for item in dividers)
