import asyncio
import sys

from sf_session import AsyncSalesforceSession


async def search_accounts(redirect_url: str, term: str):
    async with AsyncSalesforceSession(redirect_url, version="59.0") as sf:
        accounts = await sf.search(
            f"FIND {{{term}}} IN NAME FIELDS RETURNING Account(Id, Name)"
        )
        for account in accounts:
            print(account["Id"], account["Name"], sep=" | ")

        if not accounts:
            return

        # fetch each account's owner through one composite batch
        owners = await sf.batch(
            [f"sobjects/Account/{account['Id']}?fields=OwnerId" for account in accounts]
        )
        print(len(owners["results"]), "owners fetched")


if __name__ == "__main__":
    asyncio.run(search_accounts(sys.argv[1], sys.argv[2]))
