#!/usr/bin/python3
#
# Copyright (c) 2020 Adrian Siekierka
#
# Permission to use, copy, modify, and/or distribute this software for any
# purpose with or without fee is hereby granted.
#
# THE SOFTWARE IS PROVIDED "AS IS" AND THE AUTHOR DISCLAIMS ALL WARRANTIES
# WITH REGARD TO THIS SOFTWARE INCLUDING ALL IMPLIED WARRANTIES OF
# MERCHANTABILITY AND FITNESS. IN NO EVENT SHALL THE AUTHOR BE LIABLE FOR ANY
# SPECIAL, DIRECT, INDIRECT, OR CONSEQUENTIAL DAMAGES OR ANY DAMAGES WHATSOEVER
# RESULTING FROM LOSS OF USE, DATA OR PROFITS, WHETHER IN AN ACTION OF
# CONTRACT, NEGLIGENCE OR OTHER TORTIOUS ACTION, ARISING OUT OF OR IN
# CONNECTION WITH THE USE OR PERFORMANCE OF THIS SOFTWARE.

"""
Convert a 1bpp BMP font sheet (64 glyphs per row, two rows, 128 glyphs)
into a text file of binary rows, one scanline per line, for $readmemb.

Line k of the output is scanline (k % char_height) of ASCII code
(k // char_height). Glyphs may not be wider than 32 pixels.
"""

from PIL import Image
from collections import namedtuple
import argparse, logging, struct, sys

logger = logging.getLogger("font2bin")

GLYPHS = 128
GLYPHS_PER_ROW = 64
GLYPH_ROWS = 2
MAX_CHAR_WIDTH = 32

HEADER_OFFSET_POS = 0x0A
# skips the DIB header size field at 0x0E
HEADER_SIZE_POS = 0x0E + 4
HEADER_BITS_POS = 0x1C

Geometry = namedtuple("Geometry", ["char_width", "char_height", "bytes_per_line", "dwords_per_line"])

class FontError(Exception):
	pass

def read_header(fp):
	fp.seek(HEADER_OFFSET_POS)
	raw = fp.read(4)
	fp.seek(HEADER_SIZE_POS)
	raw += fp.read(8)
	if len(raw) != 12:
		raise FontError("bitmap header is truncated")
	pixel_offset, = struct.unpack("<I", raw[0:4])
	width, height = struct.unpack("<ii", raw[4:12])
	return pixel_offset, width, height

def read_bit_count(fp):
	fp.seek(HEADER_BITS_POS)
	raw = fp.read(2)
	if len(raw) != 2:
		raise FontError("bitmap header is truncated")
	return struct.unpack("<H", raw)[0]

def geometry(width, height):
	char_width = width // GLYPHS_PER_ROW
	char_height = height // GLYPH_ROWS
	# 64 glyphs per row always keeps a row dword aligned
	bytes_per_line = char_width * GLYPHS_PER_ROW // 8
	return Geometry(char_width, char_height, bytes_per_line, bytes_per_line // 4)

def swap_endian32(x):
	return ((x >> 24) & 0x000000FF) | ((x >> 8) & 0x0000FF00) \
		| ((x << 8) & 0x00FF0000) | ((x << 24) & 0xFF000000)

def load_pixels(fp, offset, height, dwords_per_line):
	"""
	Read the pixel rows into a flat list of 32-bit words, top row first,
	with bit 31 of each word being the leftmost pixel of its span.
	"""
	data = [0] * (dwords_per_line * height)
	row_size = dwords_per_line * 4
	row_format = "<%dI" % dwords_per_line
	fp.seek(offset)
	# rows are stored bottom-up
	for i in range(height - 1, -1, -1):
		raw = fp.read(row_size)
		if len(raw) != row_size:
			raise FontError("pixel data ends early (row %d)" % (height - 1 - i))
		base = i * dwords_per_line
		for j, word in enumerate(struct.unpack(row_format, raw)):
			data[base + j] = swap_endian32(word)
	return data

def glyph_bit_offset(code, char_width, char_height, dwords_per_line):
	bits = (code % GLYPHS_PER_ROW) * char_width
	if code >= GLYPHS_PER_ROW:
		bits += char_height * dwords_per_line * 32
	return bits

def extract_bits(data, bit_offset, width):
	"""Requires width <= 32."""
	dword = bit_offset // 32
	# counted from the MSB
	offset = bit_offset % 32
	if offset + width <= 32:
		return (data[dword] >> (32 - width - offset)) & ((1 << width) - 1)

	# XXXX XXXX XXX1 1111 | 111X XXXX XXXX XXXX -> 1111 1111
	rest = width - (32 - offset)
	tmp1 = data[dword] & ((1 << (32 - offset)) - 1)
	tmp2 = data[dword + 1] & (((1 << rest) - 1) << (32 - rest))
	return (tmp1 << rest) | (tmp2 >> (32 - rest))

def assemble_character(data, code, char_width, char_height, dwords_per_line):
	bits = glyph_bit_offset(code, char_width, char_height, dwords_per_line)
	character = []
	for i in range(char_height):
		character.append(extract_bits(data, bits, char_width))
		bits += dwords_per_line * 32
	return character

def assemble_font(data, geo):
	for code in range(GLYPHS):
		yield assemble_character(data, code, geo.char_width, geo.char_height, geo.dwords_per_line)

def to_binary(n, width):
	if width == 0:
		return "\n"
	return format(n & ((1 << width) - 1), "0%db" % width) + "\n"

def write_font(out, glyphs, char_width):
	lines = 0
	for character in glyphs:
		for row in character:
			out.write(to_binary(row, char_width))
			lines += 1
	return lines

def check_bitmap(path, width, height, bits):
	"""
	Make sure the sheet is really what the header arithmetic assumes:
	1bpp, 64x2 glyph cells, glyphs no wider than one dword.
	"""
	if bits != 1:
		raise FontError("%s is not 1 bit per pixel (%d bpp)" % (path, bits))
	with Image.open(path) as im:
		if im.format != "BMP":
			raise FontError("%s is not a BMP file (%s)" % (path, im.format))
		if im.size != (width, height):
			raise FontError("header size %dx%d does not match image size %dx%d" % ((width, height) + im.size))
	if width <= 0 or width % GLYPHS_PER_ROW != 0:
		raise FontError("image width %d is not a multiple of %d" % (width, GLYPHS_PER_ROW))
	if height <= 0 or height % GLYPH_ROWS != 0:
		raise FontError("image height %d is not a multiple of %d" % (height, GLYPH_ROWS))
	if width // GLYPHS_PER_ROW > MAX_CHAR_WIDTH:
		raise FontError("glyphs are %d pixels wide, at most %d supported" % (width // GLYPHS_PER_ROW, MAX_CHAR_WIDTH))

def convert(src_path, out_path="font.bin", check=True):
	try:
		src = open(src_path, "rb")
	except OSError as e:
		raise OSError("error opening source font file %s: %s" % (src_path, e.strerror)) from e
	with src:
		try:
			out = open(out_path, "w", newline="\n")
		except OSError as e:
			raise OSError("error creating destination bin file %s: %s" % (out_path, e.strerror)) from e
		with out:
			pixel_offset, width, height = read_header(src)
			if check:
				check_bitmap(src_path, width, height, read_bit_count(src))
			geo = geometry(width, height)
			logger.debug("%dx%d image, %dx%d glyphs, %d dwords per line, pixel data at 0x%X",
				width, height, geo.char_width, geo.char_height, geo.dwords_per_line, pixel_offset)

			data = load_pixels(src, pixel_offset, height, geo.dwords_per_line)
			lines = write_font(out, assemble_font(data, geo), geo.char_width)
	logger.info("wrote %s (%d lines of %d bits)", out_path, lines, geo.char_width)
	return geo

def main(argv=None):
	parser = argparse.ArgumentParser(description="Convert a 1bpp BMP font sheet into a $readmemb font ROM")
	parser.add_argument("bitmap", help="font sheet, 64 glyphs on the top row and 64 on the bottom row")
	parser.add_argument("-o", "--output", default="font.bin", help="output file (default: font.bin)")
	parser.add_argument("--no-check", dest="check", action="store_false",
		help="trust the header instead of validating the image with Pillow")
	parser.add_argument("-v", "--verbose", action="store_true")
	args = parser.parse_args(argv)

	logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO, format="%(levelname)s: %(message)s")

	try:
		convert(args.bitmap, args.output, args.check)
	except (OSError, FontError, ValueError) as e:
		logger.error("%s", e)
		return 1
	except MemoryError:
		logger.error("error allocating memory")
		return 1
	return 0

if __name__ == "__main__":
	sys.exit(main())
