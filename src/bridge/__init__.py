"""Call media to conversational agent relay.

A call leg (Twilio Media Streams websocket) is paired with one agent leg
(conversational AI websocket) for the life of the call:
call leg -> Session -> UpstreamDialer -> agent leg.
"""
