"""Two-tier output parsing for each bundled tool."""
import json

import pytest

from osintforge.errors import ParseError
from osintforge.toolkit.models import ParserStrategy
from osintforge.toolkit.parsing import extract_json, pick
from osintforge.toolkit.tools import domain_harvest, email_check, image_metadata, phone_lookup, username_search


class TestExtractJson:
    def test_ignores_banner_noise(self):
        raw = 'Starting scan...\n{"a": {"b": 1}}\nDone in 3s'
        assert extract_json(raw) == {"a": {"b": 1}}

    def test_earliest_opener_wins(self):
        assert extract_json('noise [1, 2] tail', "[{") == [1, 2]
        assert extract_json('[{"name": "x"}]', "[{") == [{"name": "x"}]

    def test_returns_none_on_garbage(self):
        assert extract_json("no json here") is None
        assert extract_json("{not: json}") is None
        assert extract_json("} backwards {") is None

    def test_pick_takes_first_present_key(self):
        assert pick({"a": None, "b": 2, "c": 3}, "a", "b", "c") == 2
        assert pick({}, "a", default="x") == "x"


class TestUsernameSearchParser:
    def test_structured(self):
        raw = json.dumps({
            "johndoe": {
                "twitter": {"status": "Claimed", "url_user": "https://twitter.com/johndoe", "response_time_s": 0.41},
                "github": {"status": "Available", "url_user": "https://github.com/johndoe", "http_status": 404},
            }
        })
        outcome = username_search.parse_output(raw)
        assert outcome.strategy is ParserStrategy.STRUCTURED
        assert outcome.data == {
            "username": "johndoe",
            "totalSites": 2,
            "foundSites": 1,
            "results": [
                {"site": "twitter", "url": "https://twitter.com/johndoe", "found": True, "responseTime": 0.41},
                {"site": "github", "url": "https://github.com/johndoe", "found": False, "httpStatus": 404},
            ],
        }

    def test_text_fallback(self):
        raw = (
            "[*] Checking username johndoe on:\n"
            "[+] Twitter: https://twitter.com/johndoe\n"
            "[+] GitHub: https://github.com/johndoe\n"
            "[-] Reddit: Not Found!\n"
        )
        outcome = username_search.parse_output(raw)
        assert outcome.strategy is ParserStrategy.TEXT_FALLBACK
        assert outcome.data["username"] == "johndoe"
        assert outcome.data["totalSites"] == 3
        assert outcome.data["foundSites"] == 2
        assert outcome.data["results"][0] == {"site": "Twitter", "url": "https://twitter.com/johndoe", "found": True}
        assert outcome.data["results"][2]["found"] is False

    def test_unrecognised(self):
        with pytest.raises(ParseError):
            username_search.parse_output("Segmentation fault")


class TestDomainHarvestParser:
    def test_structured(self):
        raw = "banner\n" + json.dumps({
            "domain": "example.com",
            "emails": ["admin@example.com"],
            "hosts": ["www.example.com", "mail.example.com"],
            "ips": ["93.184.216.34"],
            "interesting_urls": ["https://example.com/admin"],
        })
        outcome = domain_harvest.parse_output(raw)
        assert outcome.strategy is ParserStrategy.STRUCTURED
        assert outcome.data["emails"] == ["admin@example.com"]
        assert outcome.data["interestingUrls"] == ["https://example.com/admin"]
        assert outcome.data["urls"] == []
        assert outcome.data["totalResults"] == 4

    def test_text_fallback(self):
        raw = (
            "[*] Target: example.com\n"
            "\n"
            "[*] Emails found: 2\n"
            "----------------------\n"
            "admin@example.com\n"
            "info@example.com\n"
            "\n"
            "[*] Hosts found: 1\n"
            "---------------------\n"
            "www.example.com:93.184.216.34\n"
        )
        outcome = domain_harvest.parse_output(raw)
        assert outcome.strategy is ParserStrategy.TEXT_FALLBACK
        assert outcome.data["domain"] == "example.com"
        assert outcome.data["emails"] == ["admin@example.com", "info@example.com"]
        assert outcome.data["hosts"] == ["www.example.com:93.184.216.34"]
        assert outcome.data["totalResults"] == 3

    def test_unrelated_json_falls_through(self):
        with pytest.raises(ParseError):
            domain_harvest.parse_output('{"unexpected": true}')


class TestPhoneLookupParser:
    def test_structured(self):
        raw = json.dumps({
            "number": "+14155552671",
            "valid": True,
            "local": "(415) 555-2671",
            "international": "+1 415-555-2671",
            "countryCode": 1,
            "country": "US",
            "carrier": "Example Wireless",
            "lineType": "mobile",
            "scanners": {"local": {"ok": True}},
        })
        outcome = phone_lookup.parse_output(raw)
        assert outcome.strategy is ParserStrategy.STRUCTURED
        assert outcome.data == {
            "number": "+14155552671",
            "valid": True,
            "localFormat": "(415) 555-2671",
            "internationalFormat": "+1 415-555-2671",
            "countryCode": "1",
            "country": "US",
            "carrier": "Example Wireless",
            "lineType": "mobile",
            "scanners": {"local": {"ok": True}},
        }

    def test_text_fallback(self):
        raw = (
            "Running local scan...\n"
            "Phone number: +14155552671\n"
            "Valid: true\n"
            "Country: US\n"
            "Carrier: Example Wireless\n"
        )
        outcome = phone_lookup.parse_output(raw)
        assert outcome.strategy is ParserStrategy.TEXT_FALLBACK
        assert outcome.data["number"] == "+14155552671"
        assert outcome.data["valid"] is True
        assert outcome.data["carrier"] == "Example Wireless"
        assert "lineType" not in outcome.data

    def test_unrecognised(self):
        with pytest.raises(ParseError):
            phone_lookup.parse_output("")


class TestImageMetadataParser:
    def test_dms_conversion(self):
        assert image_metadata.dms_to_decimal("51 deg 30' 26.46\" N") == 51.507350
        assert image_metadata.dms_to_decimal("0 deg 7' 39.90\" W") == -0.127750
        assert image_metadata.dms_to_decimal("33 deg 52' 0.00\"", "South") == pytest.approx(-33.866667)
        assert image_metadata.dms_to_decimal(12.5, "E") == 12.5
        assert image_metadata.dms_to_decimal("not a coordinate") is None
        assert image_metadata.dms_to_decimal(None) is None

    def test_structured_with_group_prefixes(self):
        raw = json.dumps([{
            "SourceFile": "/data/IMG_0001.jpg",
            "System:FileName": "IMG_0001.jpg",
            "IFD0:Make": "Canon",
            "IFD0:Model": "Canon EOS 5D",
            "File:ImageWidth": 4000,
            "GPS:GPSLatitude": "51 deg 30' 26.46\"",
            "GPS:GPSLatitudeRef": "North",
            "GPS:GPSLongitude": "0 deg 7' 39.90\"",
            "GPS:GPSLongitudeRef": "West",
            "GPS:GPSAltitude": "35 m Above Sea Level",
        }])
        outcome = image_metadata.parse_output(raw)
        data = outcome.data
        assert outcome.strategy is ParserStrategy.STRUCTURED
        assert data["fileName"] == "IMG_0001.jpg"
        assert data["cameraMake"] == "Canon"
        assert data["cameraModel"] == "Canon EOS 5D"
        assert data["imageWidth"] == 4000
        assert data["gps"] == {"latitude": 51.50735, "longitude": -0.12775, "altitude": "35 m Above Sea Level"}
        assert data["tags"]["IFD0:Make"] == "Canon"

    def test_no_gps(self):
        outcome = image_metadata.parse_output('[{"FileName": "a.png", "FileType": "PNG"}]')
        assert "gps" not in outcome.data
        assert outcome.data["fileType"] == "PNG"

    def test_text_fallback(self):
        raw = (
            "File Name                       : IMG_0001.jpg\n"
            "Make                            : Canon\n"
            "GPS Latitude                    : 51 deg 30' 26.46\" N\n"
            "GPS Longitude                   : 0 deg 7' 39.90\" W\n"
        )
        outcome = image_metadata.parse_output(raw)
        assert outcome.strategy is ParserStrategy.TEXT_FALLBACK
        assert outcome.data["fileName"] == "IMG_0001.jpg"
        assert outcome.data["cameraMake"] == "Canon"
        assert outcome.data["gps"]["latitude"] == 51.50735
        assert outcome.data["gps"]["longitude"] == -0.12775

    def test_unrecognised(self):
        with pytest.raises(ParseError):
            image_metadata.parse_output("Error: File not found - /data/missing.jpg")


class TestEmailCheckParser:
    def test_structured_array(self):
        raw = "some banner\n" + json.dumps([
            {"name": "twitter", "exists": True, "rateLimit": False, "emailrecovery": "s*****@e******.com"},
            {"name": "instagram", "exists": False, "rateLimit": True},
        ]) + "\nsomeone@example.com"
        outcome = email_check.parse_output(raw)
        assert outcome.strategy is ParserStrategy.STRUCTURED
        assert outcome.data["email"] == "someone@example.com"
        assert outcome.data["totalChecked"] == 2
        assert outcome.data["accountsFound"] == 1
        assert outcome.data["accounts"][0] == {
            "site": "twitter",
            "exists": True,
            "rateLimit": False,
            "emailRecovery": "s*****@e******.com",
        }
        assert outcome.data["accounts"][1]["rateLimit"] is True

    def test_structured_object(self):
        raw = json.dumps({"email": "someone@example.com", "results": [{"domain": "spotify.com", "exists": True}]})
        outcome = email_check.parse_output(raw)
        assert outcome.data["accounts"] == [{"site": "spotify.com", "exists": True, "rateLimit": False}]

    def test_text_fallback(self):
        raw = (
            "Email: someone@example.com\n"
            "[+] Email used, [-] Email not used, [x] Rate limit\n"
            "[+] twitter.com\n"
            "[-] instagram.com\n"
            "[x] amazon.com\n"
        )
        outcome = email_check.parse_output(raw)
        assert outcome.strategy is ParserStrategy.TEXT_FALLBACK
        assert outcome.data["email"] == "someone@example.com"
        assert outcome.data["totalChecked"] == 3
        assert outcome.data["accountsFound"] == 1
        assert outcome.data["accounts"][2] == {"site": "amazon.com", "exists": False, "rateLimit": True}

    def test_unrecognised(self):
        with pytest.raises(ParseError):
            email_check.parse_output("Traceback (most recent call last):\n  boom")
