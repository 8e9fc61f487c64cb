"""
Page-side function declarations.

Functions meant for Runtime.callFunctionOn run with ``this`` bound to the
target element. Functions meant for the script bridge take all their inputs
as arguments.
"""

# Script bridge: remove our own overlay iframes, descending into open shadow roots
REMOVE_OVERLAY_FRAMES = """
function (prefixes) {
  let removed = 0;
  const visit = (root) => {
    for (const frame of root.querySelectorAll('iframe')) {
      const src = frame.getAttribute('src') || '';
      if (prefixes.some((prefix) => src.startsWith(prefix))) {
        frame.remove();
        removed += 1;
      }
    }
    for (const el of root.querySelectorAll('*')) {
      if (el.shadowRoot) {
        visit(el.shadowRoot);
      }
    }
  };
  visit(document);
  return removed;
}
"""

READ_NODE_MARKER = """
function (attribute) {
  return {
    existingId: typeof this.getAttribute === 'function' ? this.getAttribute(attribute) : null,
    tagName: this.tagName ? this.tagName.toLowerCase() : null
  };
}
"""

WRITE_NODE_MARKER = """
function (attribute, uid) {
  if (typeof this.setAttribute === 'function') {
    this.setAttribute(attribute, uid);
  }
}
"""

HIGHLIGHT_ELEMENT = """
function (attribute) {
  if (!this.style) return;
  this.setAttribute(attribute, 'true');
  this.style.outline = '2px solid #3b82f6';
  this.style.outlineOffset = '2px';
  this.style.boxShadow = '0 0 0 4px rgba(59, 130, 246, 0.3)';
}
"""

REMOVE_HIGHLIGHT = """
function (attribute) {
  if (!this.style || !this.hasAttribute(attribute)) return;
  this.removeAttribute(attribute);
  this.style.outline = '';
  this.style.outlineOffset = '';
  this.style.boxShadow = '';
}
"""

CONTAINS_NODE = """
function (topEl) {
  return this === topEl || this.contains(topEl);
}
"""

SCRIPTED_CLICK = """
function (count) {
  for (let i = 0; i < count; i++) {
    if (typeof this.click === 'function') {
      this.click();
    } else {
      this.dispatchEvent(new MouseEvent('click', { bubbles: true, cancelable: true, view: window }));
    }
  }
}
"""

SCRIPTED_HOVER = """
function () {
  for (const type of ['mouseover', 'mouseenter', 'mousemove']) {
    this.dispatchEvent(new MouseEvent(type, { bubbles: type !== 'mouseenter', cancelable: true, view: window }));
  }
}
"""

# Returns true when an embedded editor accepted the value
FILL_EDITOR = """
function (value) {
  const container = this.closest ? this.closest('.monaco-editor') : null;
  if (container) {
    const candidate = container.editor || container.__monaco_editor__ || container._editor;
    if (candidate && typeof candidate.setValue === 'function') {
      candidate.setValue(value);
      return true;
    }
  }
  const monaco = window.monaco;
  if (monaco && monaco.editor && typeof monaco.editor.getEditors === 'function') {
    for (const editor of monaco.editor.getEditors()) {
      const node = editor.getContainerDomNode ? editor.getContainerDomNode() : null;
      if (node && (node === this || node.contains(this))) {
        editor.setValue(value);
        return true;
      }
    }
  }
  if (this._editor && typeof this._editor.setValue === 'function') {
    this._editor.setValue(value);
    return true;
  }
  const cmHost = this.CodeMirror ? this : (this.closest ? this.closest('.CodeMirror') : null);
  if (cmHost && cmHost.CodeMirror && typeof cmHost.CodeMirror.setValue === 'function') {
    cmHost.CodeMirror.setValue(value);
    return true;
  }
  return false;
}
"""

DISPATCH_COMMIT_EVENTS = """
function () {
  this.dispatchEvent(new Event('input', { bubbles: true }));
  this.dispatchEvent(new Event('change', { bubbles: true }));
  if (typeof this.blur === 'function') {
    this.blur();
  }
}
"""

IS_FILL_TARGET = """
function () {
  const tag = this.tagName;
  return tag === 'INPUT' || tag === 'TEXTAREA' || tag === 'SELECT' || this.isContentEditable === true;
}
"""

GET_EDITOR_VALUE = """
function () {
  const container = this.closest ? this.closest('.monaco-editor') : null;
  if (container) {
    const candidate = container.editor || container.__monaco_editor__ || container._editor;
    if (candidate && typeof candidate.getValue === 'function') {
      return candidate.getValue();
    }
  }
  const monaco = window.monaco;
  if (monaco && monaco.editor && typeof monaco.editor.getEditors === 'function') {
    for (const editor of monaco.editor.getEditors()) {
      const node = editor.getContainerDomNode ? editor.getContainerDomNode() : null;
      if (node && (node === this || node.contains(this))) {
        return editor.getValue();
      }
    }
  }
  const cmHost = this.CodeMirror ? this : (this.closest ? this.closest('.CodeMirror') : null);
  if (cmHost && cmHost.CodeMirror && typeof cmHost.CodeMirror.getValue === 'function') {
    return cmHost.CodeMirror.getValue();
  }
  const aceHost = this.closest ? this.closest('.ace_editor') : null;
  if (aceHost && window.ace && typeof window.ace.edit === 'function') {
    return window.ace.edit(aceHost).getValue();
  }
  if (this.value !== undefined && this.value !== null) {
    return String(this.value);
  }
  if (this.isContentEditable) {
    return this.textContent;
  }
  return null;
}
"""

IS_MAC_PLATFORM = "navigator.platform.toUpperCase().indexOf('MAC') >= 0"

# Script bridge: every DOM-only locator action, addressed by the node id marker
RUN_DOM_ACTION = """
function (attribute, uid, action, payload) {
  const el = document.querySelector('[' + attribute + '="' + CSS.escape(uid) + '"]');
  if (!el) {
    return {
      success: false,
      errorType: 'not-found',
      error: 'Element with UID "' + uid + '" not found. The page may have changed.'
    };
  }
  if (action !== 'value' && action !== 'editor-value') {
    el.scrollIntoView({ block: 'center', inline: 'center' });
  }
  switch (action) {
    case 'click': {
      const count = payload.count || 1;
      for (let i = 0; i < count; i++) {
        el.click();
      }
      return { success: true };
    }
    case 'fill': {
      const value = payload.value;
      const tag = el.tagName;
      if (tag === 'INPUT' || tag === 'TEXTAREA' || tag === 'SELECT') {
        const descriptor = Object.getOwnPropertyDescriptor(Object.getPrototypeOf(el), 'value');
        el.focus();
        if (descriptor && descriptor.set) {
          descriptor.set.call(el, value);
        } else {
          el.value = value;
        }
      } else if (el.isContentEditable) {
        el.focus();
        el.textContent = value;
      } else {
        return {
          success: false,
          errorType: 'fill-target-mismatch',
          error: 'Element is not an input, textarea, select or contenteditable element.'
        };
      }
      el.dispatchEvent(new Event('input', { bubbles: true }));
      el.dispatchEvent(new Event('change', { bubbles: true }));
      return { success: true };
    }
    case 'hover': {
      for (const type of ['mouseover', 'mouseenter', 'mousemove']) {
        el.dispatchEvent(new MouseEvent(type, { bubbles: type !== 'mouseenter', cancelable: true, view: window }));
      }
      return { success: true };
    }
    case 'bounding-box': {
      const rect = el.getBoundingClientRect();
      return { success: true, data: { x: rect.x, y: rect.y, width: rect.width, height: rect.height } };
    }
    case 'value':
      return { success: true, data: el.value !== undefined ? String(el.value) : el.textContent };
    case 'editor-value':
      return { success: true, data: (__GET_EDITOR_VALUE__).call(el) };
    default:
      return { success: false, error: 'Unknown action: ' + action };
  }
}
""".replace("__GET_EDITOR_VALUE__", GET_EDITOR_VALUE.strip())

# Script bridge: hand a message envelope to the page-side content handler
DELIVER_CONTENT_MESSAGE = """
function (message) {
  const handler = window.__tabpilotContentHandler;
  if (typeof handler !== 'function') {
    return null;
  }
  return handler(message);
}
"""
