"""LLM prompt templates for extraction stages."""

# Common instruction to suppress thinking and ensure JSON-only output
# Note: curly braces must be escaped as {{ }} for LangChain templates
JSON_ONLY_INSTRUCTION = """
CRITICAL: You MUST respond with ONLY a valid JSON object.
- Do NOT include any thinking, reasoning, or explanation.
- Do NOT use markdown code blocks.
- Start your response directly with the opening brace
- No text before or after the JSON."""

FREIGHT_CONTEXT = """You are analyzing a phone call recorded by a freight brokerage.
A broker arranges truck transportation between shippers (customers with freight) and
carriers (trucking companies, owner-operators, their drivers and dispatchers)."""


# =============================================================================
# Classification
# =============================================================================

CLASSIFICATION_SYSTEM_PROMPT = FREIGHT_CONTEXT + """

Classify the call.

CALL TYPES:
- carrier: broker and a carrier discuss covering a load (availability, equipment, rate, MC number)
- shipper: a shipper books or requests a quote for freight
- check_call: status update on a load already assigned (location, ETA, delays, delivery)
- unknown: none of the above can be determined

RULES:
1. Base the decision on what is said, not on the caller's hint alone
2. List the exact short phrases that drove the decision as indicators
3. Mark has_multiple_loads when more than one distinct load is discussed
4. Mark is_continuation when the call refers back to an earlier conversation
""" + JSON_ONLY_INSTRUCTION

CLASSIFICATION_USER_PROMPT = """CALLER'S HINT: {call_type_hint}

TRANSCRIPT EXCERPT:
---
{transcript_excerpt}
---

Respond with ONLY this JSON structure:
{{
  "call_type": "carrier|shipper|check_call|unknown",
  "sub_types": ["new_load_booking", "rate_negotiation", "capacity_check"],
  "indicators": ["exact phrase from the call"],
  "has_multiple_loads": false,
  "is_continuation": false,
  "confidence": 0-100,
  "reasoning": "one sentence"
}}"""


# =============================================================================
# Speaker Identification
# =============================================================================

SPEAKER_SYSTEM_PROMPT = FREIGHT_CONTEXT + """

Identify the role of every speaker label in the transcript.

ROLES:
- broker: works for the brokerage, offers or books loads, asks for MC numbers
- carrier: trucking company representative negotiating for their truck
- driver: the person driving the truck
- dispatcher: dispatches trucks for a carrier
- shipper: customer who owns the freight
- unknown: cannot be determined

RULES:
1. Use the speaker labels exactly as they appear in brackets
2. Assign roles from behavior (who offers the load, who asks for the rate)
3. Only give a name or company if it is explicitly stated
""" + JSON_ONLY_INSTRUCTION

SPEAKER_USER_PROMPT = """CALL TYPE: {call_type}

UTTERANCES ([index][speaker label] text):
---
{utterances}
---

Respond with ONLY this JSON structure:
{{
  "speakers": [
    {{"label": "A", "role": "broker|carrier|driver|dispatcher|shipper|unknown", "name": null, "company": null, "confidence": 0-100}}
  ],
  "broker_label": "A"
}}"""


# =============================================================================
# Load Extraction
# =============================================================================

LOAD_SYSTEM_PROMPT = FREIGHT_CONTEXT + """

Extract every load discussed on the call.

RULES:
1. One entry per distinct load (different lane or pickup date)
2. Use two-letter state codes
3. Report weight with its unit exactly as stated (lbs, tons, kg)
4. Equipment examples: dry van, reefer, flatbed, step deck, power only, hotshot
5. Leave a field null when it is not stated. Do not guess.
""" + JSON_ONLY_INSTRUCTION

LOAD_USER_PROMPT = """CALL TYPE: {call_type}
SPEAKER ROLES: {speaker_roles}

TRANSCRIPT:
---
{transcript}
---

Respond with ONLY this JSON structure:
{{
  "loads": [
    {{
      "origin_city": null, "origin_state": null,
      "destination_city": null, "destination_state": null,
      "commodity": null, "weight": null, "weight_unit": "lbs|tons|kg",
      "pallet_count": null, "equipment_type": null,
      "pickup_date": null, "delivery_date": null,
      "reference_number": null, "special_requirements": [],
      "confidence": 0-100
    }}
  ]
}}"""


# =============================================================================
# Rate Extraction
# =============================================================================

RATE_SYSTEM_PROMPT = FREIGHT_CONTEXT + """

List every rate figure quoted on the call, in the order spoken.

RULES:
1. amount is a number without currency symbols or commas
2. rate_type is flat, per_mile or all_in
3. speaker_role is broker, carrier, shipper or unknown
4. Do not report MC numbers, weights, mileage or reference numbers as rates
""" + JSON_ONLY_INSTRUCTION

RATE_USER_PROMPT = """SPEAKER ROLES: {speaker_roles}

TRANSCRIPT:
---
{transcript}
---

Respond with ONLY this JSON structure:
{{
  "rates": [
    {{"amount": 2150, "rate_type": "flat|per_mile|all_in", "miles": null, "speaker_role": "broker", "includes_fuel": null, "context": "short quote", "confidence": 0-100}}
  ],
  "payment_terms": null,
  "quick_pay": null
}}"""


# =============================================================================
# Carrier / Shipper Information
# =============================================================================

CARRIER_SYSTEM_PROMPT = FREIGHT_CONTEXT + """

Extract the carrier's identity and equipment.

RULES:
1. MC and DOT numbers are digits only
2. Only report values that are explicitly stated on the call
3. Give a 0-100 confidence per extracted field in field_confidence
""" + JSON_ONLY_INSTRUCTION

CARRIER_USER_PROMPT = """SPEAKER ROLES: {speaker_roles}

TRANSCRIPT:
---
{transcript}
---

Respond with ONLY this JSON structure:
{{
  "company_name": null, "mc_number": null, "dot_number": null,
  "contact_name": null, "phone": null, "email": null,
  "driver_name": null, "driver_phone": null, "truck_number": null,
  "equipment_type": null,
  "field_confidence": {{"mc_number": 0-100}},
  "confidence": 0-100
}}"""

SHIPPER_SYSTEM_PROMPT = FREIGHT_CONTEXT + """

Extract the shipper's (customer's) identity and shipping profile.

RULES:
1. Only report values that are explicitly stated on the call
2. typical_lanes are lanes the shipper says it ships regularly, as "City, ST to City, ST"
3. Give a 0-100 confidence per extracted field in field_confidence
""" + JSON_ONLY_INSTRUCTION

SHIPPER_USER_PROMPT = """SPEAKER ROLES: {speaker_roles}

TRANSCRIPT:
---
{transcript}
---

Respond with ONLY this JSON structure:
{{
  "company_name": null, "contact_name": null, "phone": null, "email": null,
  "location": null, "shipping_frequency": null, "typical_lanes": [],
  "field_confidence": {{"company_name": 0-100}},
  "confidence": 0-100
}}"""


# =============================================================================
# Negotiation
# =============================================================================

NEGOTIATION_SYSTEM_PROMPT = FREIGHT_CONTEXT + """

Analyze the rate negotiation between the broker and the carrier side.

STATUS DEFINITIONS:
- agreed: both sides explicitly accepted the same final rate
- rejected: a side declined and ended the discussion without promising to revisit
- callback_requested: a side deferred the decision (driver, dispatch) or asked to call back
- pending: no explicit resolution

RULES:
1. List every rate mention with the index of the utterance it appears in
2. Accessorials: detention, lumper, fuel_surcharge, quick_pay, tonu, layover, other
3. Contingencies are conditions attached to the deal ("if driver confirms")
4. Do not infer agreement from politeness ("okay", "sure") alone
""" + JSON_ONLY_INSTRUCTION

NEGOTIATION_USER_PROMPT = """SPEAKER ROLES: {speaker_roles}

UTTERANCES ([index][speaker label] text):
---
{utterances}
---

Respond with ONLY this JSON structure:
{{
  "status": "agreed|rejected|callback_requested|pending",
  "agreed_rate": null,
  "rate_includes_fuel": null,
  "rate_mentions": [{{"utterance_index": 0, "speaker_label": "A", "rate": 2000}}],
  "accessorials": {{"detention": "$50/hr after 2 hours"}},
  "contingencies": [],
  "rejection_reason": null,
  "callback_conditions": null,
  "pending_reason": null
}}"""


# =============================================================================
# Action Items
# =============================================================================

ACTION_ITEMS_SYSTEM_PROMPT = FREIGHT_CONTEXT + """

List the follow-up actions that came out of the call.

RULES:
1. owner is broker, carrier, shipper or unknown
2. priority is low, medium or high
3. callbacks are promised calls ("I'll call you back by 3")
4. documents_requested are paperwork asked for (rate con, W-9, insurance certificate, POD)
""" + JSON_ONLY_INSTRUCTION

ACTION_ITEMS_USER_PROMPT = """CALL TYPE: {call_type}

TRANSCRIPT:
---
{transcript}
---

Respond with ONLY this JSON structure:
{{
  "items": [{{"description": "Send rate confirmation", "owner": "broker", "due": null, "priority": "high"}}],
  "callbacks": [],
  "documents_requested": [],
  "confidence": 0-100
}}"""


# =============================================================================
# Temporal References
# =============================================================================

TEMPORAL_SYSTEM_PROMPT = FREIGHT_CONTEXT + """

List every date and time reference in the call and resolve it against the call date.

RULES:
1. resolved_date is YYYY-MM-DD or null when it cannot be pinned down
2. resolved_time is HH:MM in 24-hour time or null; "end of day" means 17:00
3. "next Monday" is the first Monday after the call date
4. context is pickup, delivery, appointment, availability, deadline or other
5. is_rush is true for ASAP, urgent, right away
6. Assume the call date's year when no year is given
""" + JSON_ONLY_INSTRUCTION

TEMPORAL_USER_PROMPT = """CALL DATE: {call_date} ({day_of_week})

TRANSCRIPT:
---
{transcript}
---

Respond with ONLY this JSON structure:
{{
  "references": [{{"original_text": "tomorrow morning", "resolved_date": "YYYY-MM-DD", "resolved_time": null, "context": "pickup", "is_rush": false, "confidence": 0-100}}],
  "assumptions": [],
  "confidence": 0-100
}}"""
