import logging
import sys

from sf_session import SalesforceSession

logging.basicConfig(level=logging.INFO)


def retitle_contacts(redirect_url: str):
    with SalesforceSession(redirect_url, version="59.0") as sf:
        contacts = sf.query("SELECT Id, Name, Title FROM Contact WHERE Title = null")
        print(len(contacts), "Contacts without a title")
        if not contacts:
            return

        _ = sf.update([{**contact, "Title": "Customer"} for contact in contacts])
        failures = [result for result in sf.update_results if not result["success"]]
        print(len(failures), "updates failed")
        print(sf.request_count, "requests,", sf.request_error_count, "retried errors")


if __name__ == "__main__":
    # the URL the OAuth implicit grant redirected to, including the #fragment
    retitle_contacts(sys.argv[1])
