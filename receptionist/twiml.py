"""TwiML rendering for orchestrator turn responses.

  continue:  <Gather input="speech" action=... speechTimeout="auto">
               <Say voice=...>text</Say>
             </Gather>
             <Redirect method="POST">action</Redirect>

  end:       <Say voice=...>text</Say><Hangup/>

The trailing <Redirect> catches the no-input case: when the caller stays
silent Twilio falls through the <Gather> and posts back to the same turn
endpoint without a SpeechResult, which re-asks the pending question.
"""

from __future__ import annotations

from xml.etree.ElementTree import Element, SubElement, tostring

from receptionist.orchestrator import END, TurnResponse


def render_turn(
    response: TurnResponse,
    action_url: str,
    voice: str = "Polly.Joanna",
    language: str = "en-US",
) -> str:
    """Return the TwiML document for one turn."""
    response_el = Element("Response")

    if response.action == END:
        say_el = SubElement(response_el, "Say")
        say_el.set("voice", voice)
        say_el.text = response.text
        SubElement(response_el, "Hangup")
    else:
        gather_el = SubElement(response_el, "Gather")
        gather_el.set("input", "speech")
        gather_el.set("action", action_url)
        gather_el.set("method", "POST")
        gather_el.set("language", language)
        gather_el.set("speechTimeout", "auto")
        say_el = SubElement(gather_el, "Say")
        say_el.set("voice", voice)
        say_el.text = response.text

        redirect_el = SubElement(response_el, "Redirect")
        redirect_el.set("method", "POST")
        redirect_el.text = action_url

    return tostring(response_el, encoding="unicode", xml_declaration=True)
