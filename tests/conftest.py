"""
Test Configuration
==================

Pytest fixtures and test configuration for jsx-stream-preview.
"""

import itertools
import json

import pytest


HERO_SOURCE = '''/// START HeroSection position=header
import React, { useState } from 'react';

const features = ['Fast', 'Safe'];

export default function HeroSection({ title = "Build faster" }) {
  const [open, setOpen] = useState(false);
  // toggles the menu
  const toggle = () => {
    setOpen(!open);
  };
  return (
    <section className="hero" data-testid="hero">
      {/* headline */}
      <h1 style={{ fontSize: 32 }}>{title}</h1>
      <p>Don't wait, it's {`v${features.length}`} ready</p>
      <img src="/logo.png" alt="logo">
      <ul>
        {features.map((item) => (
          <li key={item}>{open ? item : <span>{item}</span>}</li>
        ))}
      </ul>
      <button onClick={toggle}>Toggle</button>
    </section>
  );
}
/// END HeroSection
'''


COMPARE_SOURCE = '''function TodoList({ items }) {
  const shown = items.filter((item) => !item.done);
  return (
    <ul className="todos">
      {shown.length < items.length && <li>Some done</li>}
      {shown.map((item) => <li key={item.id}>{item.label}</li>)}
    </ul>
  );
}
'''


ARROW_SOURCE = '''const Gallery = ({ items }) => {
  return (
    <div className="gallery">
      <main>
        {items.length > 0 ? <p>{items.length} items</p> : <p>Empty</p>}
      </main>
    </div>
  );
};
'''


class Events:
    """Builders for raw stream event payloads."""

    @staticmethod
    def start(name, position="main", component_id=None):
        metadata = {"componentName": name, "position": position}
        if component_id is not None:
            metadata["componentId"] = component_id
        return {"type": "content_block_start", "metadata": metadata}

    @staticmethod
    def delta(component_id, text):
        return {
            "type": "content_block_delta",
            "metadata": {"componentId": component_id},
            "delta": {"text": text},
        }

    @staticmethod
    def text(text):
        """Raw model text frame, as sent by an upstream without component events."""
        return {"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": text}}

    @staticmethod
    def stop(component_id, is_complete=True):
        return {
            "type": "content_block_stop",
            "metadata": {"componentId": component_id, "isComplete": is_complete},
        }

    @staticmethod
    def message_stop():
        return {"type": "message_stop"}

    @staticmethod
    def error(message, component_id=None, retryable=True, code=None):
        event = {"type": "error", "message": message, "retryable": retryable}
        if code is not None:
            event["code"] = code
        if component_id is not None:
            event["metadata"] = {"componentId": component_id}
        return event

    @staticmethod
    def sse(*events):
        """Encode events as an SSE response body."""
        return "".join(f"data: {json.dumps(event)}\n\n" for event in events)


@pytest.fixture
def events():
    """Provide the event payload builders."""
    return Events


@pytest.fixture
def hero_source():
    """Provide a realistic component buffer, markers included."""
    return HERO_SOURCE


@pytest.fixture
def clock():
    """Provide a deterministic, strictly increasing clock."""
    counter = itertools.count(1)
    return lambda: float(next(counter))


@pytest.fixture
def registry():
    """Provide an empty ComponentRegistry."""
    from jsx_stream.registry import ComponentRegistry

    return ComponentRegistry(capacity=20)


@pytest.fixture
def session():
    """Provide a fresh StreamSession."""
    from jsx_stream.models.session import StreamSession

    return StreamSession()


@pytest.fixture
def ingestor(registry, session, clock):
    """Provide a StreamIngestor wired to the registry and session fixtures."""
    from jsx_stream.stream import StreamIngestor

    return StreamIngestor(registry, session, clock=clock)


@pytest.fixture(params=["hero", "compare", "arrow"])
def streamed_source(request):
    """Provide each sample component buffer in turn."""
    return {"hero": HERO_SOURCE, "compare": COMPARE_SOURCE, "arrow": ARROW_SOURCE}[request.param]
