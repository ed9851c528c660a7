"""Tests for the HubSpot system-of-record client."""

import json

import httpx
import pytest

from infra.hubspot import HubSpotClient, property_from_record
from services.ownership.errors import SystemOfRecordError
from services.ownership.retry import NO_RETRY


class FakeHubSpot:
    """Records requests and answers the few endpoints the client uses.

    Contacts and engagements it creates are remembered, so a second run sees
    what the first one wrote.
    """

    def __init__(self, existing_contact=None, fail_patch=False):
        self.requests = []
        self.contacts = {}
        self.engagements = []
        self.existing_contact = existing_contact
        self.fail_patch = fail_patch

    def posted(self, path):
        return [body for method, p, body in self.requests if method == "POST" and p == path]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content) if request.content else None
        self.requests.append((request.method, request.url.path, body))
        path = request.url.path
        if path == "/crm/v3/objects/0-420/search":
            return httpx.Response(200, json={"results": [
                {"id": "101", "properties": {
                    "hs_address_1": "Vesterbrogade 10 ", "hs_zip": "1620", "hs_city": "København V",
                    "virksomhed": "Vesterbro Ejendomme ApS", "owner_company_cvr": "",
                }},
                {"id": "102", "properties": {"hs_zip": "1620"}},
            ]})
        if path == "/crm/v3/objects/contacts/search":
            email = body["filterGroups"][0]["filters"][0]["value"]
            found = self.existing_contact or self.contacts.get(email)
            return httpx.Response(200, json={"results": [{"id": found}] if found else []})
        if path == "/crm/v3/objects/contacts" and request.method == "POST":
            contact_id = str(501 + len(self.contacts))
            self.contacts[body["properties"]["email"]] = contact_id
            return httpx.Response(201, json={"id": contact_id})
        if path.startswith("/engagements/v1/engagements/associated/CONTACT/"):
            contact_id = int(path.split("/")[-2])
            results = [e for e in self.engagements if contact_id in e["associations"]["contactIds"]]
            return httpx.Response(200, json={"results": results, "hasMore": False})
        if path == "/engagements/v1/engagements":
            engagement = dict(body, engagement=dict(body["engagement"], id=9001 + len(self.engagements)))
            self.engagements.append(engagement)
            return httpx.Response(200, json={"engagement": engagement["engagement"]})
        if request.method == "PATCH":
            if self.fail_patch:
                return httpx.Response(400, text="bad property")
            return httpx.Response(200, json={})
        return httpx.Response(404)


def hubspot(fake: FakeHubSpot, token="pat-test") -> HubSpotClient:
    return HubSpotClient(httpx.AsyncClient(transport=httpx.MockTransport(fake)), token, retry=NO_RETRY)


@pytest.mark.no_db
class TestPropertyFromRecord:

    def test_mapping(self):
        prop = property_from_record({"id": 7, "properties": {
            "hs_name": "Vesterbrogade 10", "hs_zip": " ", "owner_company_name": "Vesterbro Ejendomme ApS",
        }})
        assert prop.property_id == "7"
        assert prop.address == "Vesterbrogade 10"
        assert prop.postal_code is None
        assert prop.owner_company_name == "Vesterbro Ejendomme ApS"

    def test_no_address(self):
        assert property_from_record({"id": "1", "properties": {}}) is None


@pytest.mark.no_db
class TestHubSpotClient:

    @pytest.mark.asyncio
    async def test_fetch_properties_skips_records_without_address(self):
        fake = FakeHubSpot()
        properties = await hubspot(fake).fetch_properties("NY_KRAEVER_RESEARCH", limit=10)

        assert [p.property_id for p in properties] == ["101"]
        assert properties[0].owner_company_name == "Vesterbro Ejendomme ApS"
        assert properties[0].owner_company_cvr is None
        _, _, body = fake.requests[0]
        assert body["filterGroups"][0]["filters"][0]["value"] == "NY_KRAEVER_RESEARCH"
        assert body["limit"] == 10

    @pytest.mark.asyncio
    async def test_update_fields(self):
        fake = FakeHubSpot()
        await hubspot(fake).update_fields("101", {"outreach_status": "FEJL"})
        assert fake.requests == [("PATCH", "/crm/v3/objects/0-420/101", {"properties": {"outreach_status": "FEJL"}})]

    @pytest.mark.asyncio
    async def test_failed_write_raises(self):
        with pytest.raises(SystemOfRecordError) as exc:
            await hubspot(FakeHubSpot(fail_patch=True)).update_fields("101", {"x": "y"})
        assert exc.value.details["status"] == 400

    @pytest.mark.asyncio
    async def test_missing_token(self, monkeypatch):
        monkeypatch.delenv("HUBSPOT_ACCESS_TOKEN", raising=False)
        with pytest.raises(SystemOfRecordError):
            await hubspot(FakeHubSpot(), token=None).update_fields("101", {})

    @pytest.mark.asyncio
    async def test_create_contact(self):
        fake = FakeHubSpot()
        contact_id = await hubspot(fake).create_contact("101", "Jens Peter Hansen", "jens@firma.dk", None)

        assert contact_id == "501"
        method, path, body = fake.requests[-1]
        assert (method, path) == ("POST", "/crm/v3/objects/contacts")
        assert body["properties"] == {"firstname": "Jens", "lastname": "Peter Hansen", "email": "jens@firma.dk"}

    @pytest.mark.asyncio
    async def test_existing_contact_is_updated(self):
        fake = FakeHubSpot(existing_contact="42")
        contact_id = await hubspot(fake).create_contact("101", "Jens Hansen", "jens@firma.dk", "33123456")

        assert contact_id == "42"
        assert fake.requests[-1][:2] == ("PATCH", "/crm/v3/objects/contacts/42")

    @pytest.mark.asyncio
    async def test_rerun_reuses_contact(self):
        fake = FakeHubSpot()
        client = hubspot(fake)
        first = await client.create_contact("101", "Jens Hansen", "jens@firma.dk", None)
        second = await client.create_contact("101", "Jens Hansen", "jens@firma.dk", "33123456")

        assert first == second == "501"
        assert len(fake.posted("/crm/v3/objects/contacts")) == 1

    @pytest.mark.asyncio
    async def test_contact_without_email_rejected(self):
        fake = FakeHubSpot()
        with pytest.raises(SystemOfRecordError):
            await hubspot(fake).create_contact("101", "Vesterbro Ejendomme ApS", None, None)
        assert fake.requests == []

    @pytest.mark.asyncio
    async def test_note_and_task(self):
        fake = FakeHubSpot()
        client = hubspot(fake)
        assert await client.attach_note("501", "Udkast: outreach mail #1", "Emne: Hej\n\nKære Jens") == "9001"
        await client.create_follow_up_task("501", "Send outreach mail: Vesterbrogade 10")

        note, task = fake.posted("/engagements/v1/engagements")
        assert note["engagement"]["type"] == "NOTE"
        assert note["associations"] == {"contactIds": [501]}
        assert note["metadata"]["body"] == "<strong>Udkast: outreach mail #1</strong><br><br>Emne: Hej<br><br>Kære Jens"
        assert task["metadata"]["status"] == "NOT_STARTED"

    @pytest.mark.asyncio
    async def test_rerun_reuses_note_and_task(self):
        fake = FakeHubSpot()
        client = hubspot(fake)
        for _ in range(2):
            note_id = await client.attach_note("501", "Udkast: outreach mail #1", "Emne: Hej")
            task_id = await client.create_follow_up_task("501", "Send outreach mail: Vesterbrogade 10")

        assert (note_id, task_id) == ("9001", "9002")
        assert len(fake.posted("/engagements/v1/engagements")) == 2
        assert await client.attach_note("502", "Udkast: outreach mail #1", "Emne: Hej") == "9003"
