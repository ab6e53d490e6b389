import pytest

from app.services.email_extraction import detect_platform, extract_job_details_from_email, normalize_key


@pytest.mark.parametrize(
    "value, expected",
    [
        ("Acme, Inc.", "acme inc"),
        ("  Senior   Backend-Engineer ", "senior backend engineer"),
        ("O’Reilly Media", "oreilly media"),
        ("McDonald's", "mcdonalds"),
        (None, ""),
    ],
)
def test_normalize_key(value, expected):
    assert normalize_key(value) == expected


def test_detect_platform():
    assert detect_platform("Your application", "jobs-noreply@linkedin.com") == "linkedin"
    assert detect_platform("Indeed Application: Analyst", "") == "indeed"
    assert detect_platform("Thanks for applying", "hr@acme.com") == "unknown"


def test_linkedin_sent_to_for():
    details = extract_job_details_from_email(
        "Your application was sent to Acme Corp",
        "LinkedIn <jobs-noreply@linkedin.com>",
        "Your application was sent to Acme Corp for Senior Backend Engineer\nLocation: Remote\n",
    )
    assert details == {
        "platform": "linkedin",
        "job_title": "Senior Backend Engineer",
        "company": "Acme Corp",
        "location": "Remote",
    }


def test_labelled_lines():
    details = extract_job_details_from_email(
        "Indeed Application: Data Analyst",
        "indeedapply@indeed.com",
        "Hi,\nApplied for: Data Analyst\nCompany: Globex\nJob location: Austin, TX\n",
    )
    assert details["platform"] == "indeed"
    assert details["job_title"] == "Data Analyst"
    assert details["company"] == "Globex"
    assert details["location"] == "Austin, TX"


def test_subject_applied_to_at():
    details = extract_job_details_from_email(
        "You applied to Product Manager at Initech", "noreply@glassdoor.com", ""
    )
    assert details["platform"] == "glassdoor"
    assert details["job_title"] == "Product Manager"
    assert details["company"] == "Initech"
    assert details["location"] is None


def test_subject_company_with_for_line():
    details = extract_job_details_from_email(
        "Your application was sent to Hooli", "", "Thanks!\nfor Site Reliability Engineer\n"
    )
    assert details["company"] == "Hooli"
    assert details["job_title"] == "Site Reliability Engineer"


def test_overlong_for_line_is_ignored():
    details = extract_job_details_from_email(
        "Your application was sent to Hooli", "", "for " + "x" * 200
    )
    assert details["company"] == "Hooli"
    assert details["job_title"] is None


def test_nothing_found():
    assert extract_job_details_from_email(None, None, None) == {
        "platform": "unknown",
        "job_title": None,
        "company": None,
        "location": None,
    }
