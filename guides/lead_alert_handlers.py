"""Example action handlers for the lead alert workflow.

Register them through configuration::

    handlers:
      enrich: lead_alert_handlers:EnrichHandler
      slack_alert: lead_alert_handlers:SlackAlertHandler
      email_send: lead_alert_handlers:send_email
"""

import os

import httpx

from relayflow import ActionHandler, ActionResult


class EnrichHandler(ActionHandler):
    """Look the lead's email domain up in a company directory."""

    timeout = 20

    async def execute(self, config):
        email = config["enrich"].get("email", "")
        domain = email.partition("@")[2]
        if not domain:
            return ActionResult.failed("validation: lead has no email address")
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.get(f"https://company.clearbit.example/v1/{domain}")
        if response.status_code == 404:
            return ActionResult.ok(company=None)
        response.raise_for_status()
        return ActionResult.ok(company=response.json().get("name"), domain=domain)


class SlackAlertHandler(ActionHandler):
    async def execute(self, config):
        settings = config["slack_alert"]
        async with httpx.AsyncClient(timeout=10) as client:
            response = await client.post(
                os.environ["SLACK_WEBHOOK_URL"],
                json={"channel": settings["channel"], "text": settings["text"]},
            )
        if response.status_code == 429:
            return ActionResult.failed("rate_limited")
        response.raise_for_status()
        return ActionResult.ok(slack_ts=response.headers.get("x-slack-ts"))


def send_email(config):
    """Plain functions work too; they run in a worker thread."""
    settings = config["email_send"]
    print(f"Sending '{settings['subject']}' to {settings['to']}")
    return {"success": True, "results": {"email_sent": True}}
